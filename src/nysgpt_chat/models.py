from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import uuid4

Role = Literal["user", "assistant"]
EntityKind = Literal["bill", "member", "committee"]

_BILL_NUMBER_RE = re.compile(r"^([A-Z])(\d+)([A-Z]?)$")


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


def new_message_id() -> str:
    return uuid4().hex


def normalize_bill_number(code: str) -> str:
    """Uppercase and strip leading zeros: ``a00405`` -> ``A405``, ``S00256A`` -> ``S256A``."""
    upper = code.strip().upper()
    match = _BILL_NUMBER_RE.match(upper)
    if not match:
        return upper
    prefix, digits, suffix = match.groups()
    return f"{prefix}{digits.lstrip('0') or '0'}{suffix}"


@dataclass(frozen=True)
class Citation:
    code: str
    label: str | None = None
    status: str | None = None
    summary: str | None = None
    group_key: str | None = None

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "bill_number": self.code,
            "title": self.label,
            "status_desc": self.status,
            "description": self.summary,
            "committee": self.group_key,
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> Citation:
        return cls(
            code=str(data.get("bill_number") or data.get("code") or "").upper(),
            label=data.get("title"),
            status=data.get("status_desc"),
            summary=data.get("description"),
            group_key=data.get("committee"),
        )


@dataclass
class Message:
    role: Role
    content: str = ""
    id: str = field(default_factory=new_message_id)
    timestamp: str = field(default_factory=utc_now)
    model: str | None = None
    streamed_content: str = ""
    is_streaming: bool = False
    citations: list[Citation] = field(default_factory=list)
    related_entities: list[Citation] = field(default_factory=list)
    reasoning: str | None = None
    side_channel_entities: list[str] = field(default_factory=list)
    source_citations: list[int] = field(default_factory=list)
    thinking_phrase: str | None = None
    _reasoning_started: float | None = field(default=None, repr=False, compare=False)
    _reasoning_finished: float | None = field(default=None, repr=False, compare=False)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def streaming_assistant(cls, *, model: str | None = None, thinking_phrase: str | None = None) -> Message:
        return cls(role="assistant", model=model, is_streaming=True, thinking_phrase=thinking_phrase)

    @property
    def text(self) -> str:
        return self.streamed_content if self.is_streaming else self.content

    @property
    def reasoning_duration(self) -> float | None:
        if self._reasoning_started is None:
            return None
        end = self._reasoning_finished if self._reasoning_finished is not None else time.monotonic()
        return max(0.0, end - self._reasoning_started)

    def update_stream(self, content: str, *, reasoning: str | None = None, reasoning_complete: bool = False) -> None:
        if not self.is_streaming:
            raise RuntimeError(f"Message {self.id} is finalized; streamed content can no longer change")
        self.streamed_content = content
        if reasoning:
            if self._reasoning_started is None:
                self._reasoning_started = time.monotonic()
            self.reasoning = reasoning
            if reasoning_complete and self._reasoning_finished is None:
                self._reasoning_finished = time.monotonic()

    def finalize(self, content: str | None = None) -> None:
        if not self.is_streaming:
            raise RuntimeError(f"Message {self.id} is already finalized")
        self.content = self.streamed_content if content is None else content
        self.is_streaming = False
        if self._reasoning_started is not None and self._reasoning_finished is None:
            self._reasoning_finished = time.monotonic()

    def apply_citations(self, citations: list[Citation]) -> None:
        self.citations = _dedupe(citations)

    def apply_related(self, related: list[Citation]) -> None:
        primary = {normalize_bill_number(c.code) for c in self.citations}
        self.related_entities = [c for c in _dedupe(related) if normalize_bill_number(c.code) not in primary]

    def to_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.text,
            "timestamp": self.timestamp,
        }
        if self.role != "assistant":
            return snapshot
        if self.model:
            snapshot["model"] = self.model
        if self.citations:
            snapshot["citations"] = [c.to_snapshot() for c in self.citations]
        if self.related_entities:
            snapshot["relatedBills"] = [c.to_snapshot() for c in self.related_entities]
        if self.reasoning:
            snapshot["reasoning"] = self.reasoning
        if self.side_channel_entities:
            snapshot["sideChannelEntities"] = list(self.side_channel_entities)
        if self.source_citations:
            snapshot["sourceCitations"] = list(self.source_citations)
        return snapshot

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> Message:
        role = data.get("role")
        if role not in ("user", "assistant"):
            raise ValueError(f"Unsupported message role in snapshot: {role!r}")
        return cls(
            role=role,
            content=str(data.get("content") or ""),
            id=str(data.get("id") or new_message_id()),
            timestamp=str(data.get("timestamp") or utc_now()),
            model=data.get("model"),
            citations=[Citation.from_snapshot(c) for c in data.get("citations") or [] if isinstance(c, dict)],
            related_entities=[
                Citation.from_snapshot(c) for c in data.get("relatedBills") or [] if isinstance(c, dict)
            ],
            reasoning=data.get("reasoning"),
            side_channel_entities=[str(e) for e in data.get("sideChannelEntities") or []],
            source_citations=[int(n) for n in data.get("sourceCitations") or []],
        )


def _dedupe(citations: list[Citation]) -> list[Citation]:
    seen: set[str] = set()
    out: list[Citation] = []
    for c in citations:
        if c.code in seen:
            continue
        seen.add(c.code)
        out.append(c)
    return out


@dataclass(frozen=True)
class LinkedEntity:
    kind: EntityKind
    id: int

    def to_columns(self) -> dict[str, int | None]:
        return {
            "bill_id": self.id if self.kind == "bill" else None,
            "member_id": self.id if self.kind == "member" else None,
            "committee_id": self.id if self.kind == "committee" else None,
        }

    @staticmethod
    def empty_columns() -> dict[str, int | None]:
        return {"bill_id": None, "member_id": None, "committee_id": None}

    @classmethod
    def from_columns(cls, row: dict[str, Any]) -> LinkedEntity | None:
        for kind, column in (("bill", "bill_id"), ("member", "member_id"), ("committee", "committee_id")):
            value = row.get(column)
            if value is not None:
                return cls(kind=kind, id=int(value))
        return None


@dataclass
class ConversationSession:
    id: str | None
    title: str
    linked_entity: LinkedEntity | None = None
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class SelectedEntity:
    kind: EntityKind
    code: str
    name: str | None = None

    @property
    def display(self) -> str:
        return self.name or self.code


@dataclass(frozen=True)
class Attachment:
    name: str
    mime_type: str
    size: int
    content: bytes | str | None = None

    @property
    def is_plain_text(self) -> bool:
        if self.mime_type.startswith("text/"):
            return True
        return self.name.lower().endswith((".txt", ".md", ".csv"))

    def read_text(self) -> str:
        if self.content is None:
            return ""
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8", errors="replace")
        return self.content


@dataclass(frozen=True)
class BillRecord:
    bill_number: str
    title: str | None = None
    status_desc: str | None = None
    description: str | None = None
    committee: str | None = None
    bill_id: int | None = None
    status_date: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> BillRecord:
        number = row.get("bill_number")
        if not isinstance(number, str) or not number.strip():
            raise ValueError(f"Bill row without bill_number: {row!r}")
        bill_id = row.get("bill_id")
        return cls(
            bill_number=number.strip(),
            title=row.get("title"),
            status_desc=row.get("status_desc"),
            description=row.get("description"),
            committee=row.get("committee") or None,
            bill_id=int(bill_id) if bill_id is not None else None,
            status_date=row.get("status_date"),
        )

    def to_citation(self, code: str | None = None) -> Citation:
        return Citation(
            code=(code or self.bill_number).upper(),
            label=self.title,
            status=self.status_desc,
            summary=self.description,
            group_key=self.committee,
        )


@dataclass(frozen=True)
class ContractRecord:
    contract_number: str
    vendor_name: str | None = None
    department_facility: str | None = None
    contract_type: str | None = None
    current_contract_amount: float | None = None
    spending_to_date: float | None = None
    contract_start_date: str | None = None
    contract_end_date: str | None = None
    contract_description: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ContractRecord:
        number = row.get("contract_number")
        if number is None or not str(number).strip():
            raise ValueError(f"Contract row without contract_number: {row!r}")
        return cls(
            contract_number=str(number).strip(),
            vendor_name=row.get("vendor_name"),
            department_facility=row.get("department_facility"),
            contract_type=row.get("contract_type"),
            current_contract_amount=_to_float(row.get("current_contract_amount")),
            spending_to_date=_to_float(row.get("spending_to_date")),
            contract_start_date=row.get("contract_start_date"),
            contract_end_date=row.get("contract_end_date"),
            contract_description=row.get("contract_description"),
        )


def _to_float(value: object) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
