import unittest

from nysgpt_chat.models import Attachment, BillRecord, Citation, ContractRecord, LinkedEntity, Message


class MessageLifecycleTests(unittest.TestCase):
    def test_finalize_copies_streamed_content_once(self) -> None:
        message = Message.streaming_assistant(model="gpt-4o-mini", thinking_phrase="Thinking...")
        message.update_stream("Hel")
        self.assertEqual("Hel", message.text)
        self.assertEqual("", message.content)
        message.update_stream("Hello")
        message.finalize()
        self.assertEqual("Hello", message.content)
        self.assertFalse(message.is_streaming)
        with self.assertRaises(RuntimeError):
            message.finalize()
        with self.assertRaises(RuntimeError):
            message.update_stream("changed")
        self.assertEqual("Hello", message.content)

    def test_reasoning_duration_is_measured(self) -> None:
        message = Message.streaming_assistant()
        self.assertIsNone(message.reasoning_duration)
        message.update_stream("", reasoning="thinking", reasoning_complete=False)
        message.update_stream("answer", reasoning="thinking hard", reasoning_complete=True)
        message.finalize()
        self.assertEqual("thinking hard", message.reasoning)
        self.assertGreaterEqual(message.reasoning_duration, 0.0)

    def test_citations_are_deduplicated_and_related_excludes_primary(self) -> None:
        message = Message(role="assistant", content="A123 and a123")
        message.apply_citations([Citation(code="A123"), Citation(code="A123", label="dup")])
        message.apply_related([Citation(code="A123"), Citation(code="S9"), Citation(code="S9")])
        self.assertEqual(["A123"], [c.code for c in message.citations])
        self.assertEqual(["S9"], [c.code for c in message.related_entities])

    def test_related_excludes_primary_written_with_leading_zeros(self) -> None:
        message = Message(role="assistant", content="A00405")
        message.apply_citations([Citation(code="A00405")])
        message.apply_related([Citation(code="A405"), Citation(code="A77")])
        self.assertEqual(["A77"], [c.code for c in message.related_entities])


class SnapshotTests(unittest.TestCase):
    def test_assistant_snapshot_shape(self) -> None:
        message = Message(role="assistant", content="S256 [1]", model="sonar")
        message.apply_citations([Citation(code="S256", label="School meals", group_key="Education")])
        message.source_citations = [1]
        snapshot = message.to_snapshot()
        self.assertEqual("S256 [1]", snapshot["content"])
        self.assertEqual("sonar", snapshot["model"])
        self.assertEqual("S256", snapshot["citations"][0]["bill_number"])
        self.assertEqual("Education", snapshot["citations"][0]["committee"])
        self.assertEqual([1], snapshot["sourceCitations"])
        self.assertNotIn("relatedBills", snapshot)

    def test_user_snapshot_has_no_metadata(self) -> None:
        snapshot = Message.user("hi").to_snapshot()
        self.assertEqual({"id", "role", "content", "timestamp"}, set(snapshot))

    def test_from_snapshot_rejects_unknown_roles(self) -> None:
        with self.assertRaises(ValueError):
            Message.from_snapshot({"role": "system", "content": "x"})


class RecordTests(unittest.TestCase):
    def test_bill_record_requires_number(self) -> None:
        with self.assertRaises(ValueError):
            BillRecord.from_row({"title": "no number"})
        record = BillRecord.from_row({"bill_number": " s256 ", "committee": "", "bill_id": "12"})
        self.assertEqual("s256", record.bill_number)
        self.assertIsNone(record.committee)
        self.assertEqual(12, record.bill_id)
        self.assertEqual("S256", record.to_citation().code)

    def test_contract_record_parses_amounts(self) -> None:
        record = ContractRecord.from_row({"contract_number": 42, "current_contract_amount": "bad"})
        self.assertEqual("42", record.contract_number)
        self.assertIsNone(record.current_contract_amount)
        with self.assertRaises(ValueError):
            ContractRecord.from_row({"vendor_name": "Acme"})

    def test_linked_entity_columns(self) -> None:
        entity = LinkedEntity(kind="committee", id=3)
        self.assertEqual({"bill_id": None, "member_id": None, "committee_id": 3}, entity.to_columns())
        self.assertEqual(entity, LinkedEntity.from_columns(entity.to_columns()))
        self.assertIsNone(LinkedEntity.from_columns(LinkedEntity.empty_columns()))

    def test_attachment_text_detection(self) -> None:
        self.assertTrue(Attachment(name="a.CSV", mime_type="application/octet-stream", size=1).is_plain_text)
        self.assertTrue(Attachment(name="x", mime_type="text/html", size=1).is_plain_text)
        self.assertFalse(Attachment(name="x.pdf", mime_type="application/pdf", size=1).is_plain_text)
        self.assertEqual("é", Attachment(name="a.txt", mime_type="text/plain", size=2, content="é".encode()).read_text())


if __name__ == "__main__":
    unittest.main()
