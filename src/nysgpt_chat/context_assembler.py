from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from nysgpt_chat.errors import EmptyInputError
from nysgpt_chat.lookup import LookupCollaborator
from nysgpt_chat.models import Attachment, ContractRecord, Message, SelectedEntity
from nysgpt_chat.system_prompt import build_system_context

DEFAULT_HISTORY_WINDOW = 10
DEFAULT_SIBLING_LIMIT = 10

# kind -> (singular, plural, singular suffix, plural suffix)
_ENTITY_PHRASES: dict[str, tuple[str, str, str, str]] = {
    "bill": (
        "bill",
        "bills",
        ", including its status, sponsors, and details",
        ", including their status, sponsors, and details",
    ),
    "member": (
        "legislator",
        "legislators",
        ", including their role, committees, and voting record",
        ", including their roles, committees, and voting records",
    ),
    "committee": (
        "committee",
        "committees",
        ", including its members and current agenda",
        ", including their members and current agendas",
    ),
}


@dataclass
class RequestPayload:
    prompt: str
    model: str
    chat_type: str = "chat"
    previous_messages: list[dict[str, str]] = field(default_factory=list)
    system_context: str = ""
    stream: bool = True

    def to_wire(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "type": self.chat_type,
            "stream": self.stream,
            "model": self.model,
            "context": {
                "previousMessages": self.previous_messages,
                "systemContext": self.system_context,
            },
        }


def synthesize_entity_prompt(selected: Sequence[SelectedEntity]) -> str:
    """Build a natural-language question out of the entities picked in the UI."""
    grouped: dict[str, list[str]] = {}
    for entity in selected:
        grouped.setdefault(entity.kind, []).append(entity.display)

    sentences: list[str] = []
    for kind in ("bill", "member", "committee"):
        names = grouped.get(kind)
        if not names:
            continue
        singular, plural, one_suffix, many_suffix = _ENTITY_PHRASES[kind]
        if len(names) == 1:
            body = f"{singular} {names[0]}{one_suffix}"
        else:
            body = f"{plural} {', '.join(names)}{many_suffix}"
        lead = "Tell me about" if not sentences else "Also, tell me about"
        sentences.append(f"{lead} {body}")
    return ". ".join(sentences)


def format_attachments(attachments: Sequence[Attachment]) -> str:
    if not attachments:
        return ""
    parts = ["Attached Files:"]
    for attachment in attachments:
        parts.append("")
        parts.append(f"--- {attachment.name} ({attachment.mime_type or 'unknown type'}, {attachment.size:,} bytes) ---")
        if attachment.is_plain_text:
            parts.append(attachment.read_text())
        else:
            parts.append("[File attached; content extraction was not performed for this file type.]")
    return "\n".join(parts)


def window_history(history: Sequence[Message], window: int = DEFAULT_HISTORY_WINDOW) -> list[dict[str, str]]:
    settled = [m for m in history if not m.is_streaming and m.content]
    if window > 0:
        settled = settled[-window:]
    return [{"role": m.role, "content": m.content} for m in settled]


def _money(value: float | None) -> str:
    return f"${value or 0:,.0f}"


def format_contract_context(
    contract: ContractRecord,
    vendor_siblings: Sequence[ContractRecord],
    department_siblings: Sequence[ContractRecord],
) -> str:
    parts = [
        "PRIMARY CONTRACT DATA:\n"
        f"- Contract Number: {contract.contract_number}\n"
        f"- Vendor: {contract.vendor_name or 'N/A'}\n"
        f"- Department: {contract.department_facility or 'N/A'}\n"
        f"- Type: {contract.contract_type or 'N/A'}\n"
        f"- Amount: {_money(contract.current_contract_amount)}\n"
        f"- Spending to Date: {_money(contract.spending_to_date)}\n"
        f"- Start Date: {contract.contract_start_date or 'N/A'}\n"
        f"- End Date: {contract.contract_end_date or 'N/A'}\n"
        f"- Description: {contract.contract_description or 'N/A'}"
    ]

    if vendor_siblings:
        lines = "\n".join(
            f"  - {c.contract_number}: {c.department_facility or 'N/A'} | {_money(c.current_contract_amount)} | "
            f"{c.contract_type or 'N/A'} | {c.contract_start_date or '?'} to {c.contract_end_date or '?'}"
            for c in vendor_siblings
        )
        parts.append(
            f"\nOTHER CONTRACTS BY SAME VENDOR ({contract.vendor_name}) - "
            f"{len(vendor_siblings)} additional contracts found:\n{lines}"
        )

    if department_siblings:
        lines = "\n".join(
            f"  - {c.contract_number}: {c.vendor_name or 'N/A'} | {_money(c.current_contract_amount)} | "
            f"{c.contract_type or 'N/A'}"
            for c in department_siblings
        )
        parts.append(
            f"\nTOP CONTRACTS IN SAME DEPARTMENT ({contract.department_facility}) - "
            f"showing top {len(department_siblings)} by amount:\n{lines}"
        )

    return "\n".join(parts)


class ContextAssembler:
    def __init__(
        self,
        lookup: LookupCollaborator | None = None,
        *,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        sibling_limit: int = DEFAULT_SIBLING_LIMIT,
    ):
        self._lookup = lookup
        self._history_window = history_window
        self._sibling_limit = sibling_limit

    async def build_request(
        self,
        user_text: str,
        attachments: Sequence[Attachment] = (),
        selected_entities: Sequence[SelectedEntity] = (),
        conversation_history: Sequence[Message] = (),
        system_context_override: str | None = None,
        *,
        model: str,
        chat_type: str | None = None,
        entity_name: str | None = None,
        contract_number: str | None = None,
    ) -> RequestPayload:
        prompt = user_text.strip()
        if not prompt and selected_entities:
            prompt = synthesize_entity_prompt(selected_entities)

        files_section = format_attachments(attachments)
        if files_section:
            prompt = f"{prompt}\n\n{files_section}" if prompt else files_section

        if not prompt.strip():
            raise EmptyInputError()

        data_context: str | None = None
        if contract_number:
            data_context = await self.build_contract_context(contract_number)

        system_context = build_system_context(chat_type, entity_name, data_context)
        if system_context_override:
            system_context = f"{system_context_override}\n\n{system_context}"

        payload = RequestPayload(
            prompt=prompt,
            model=model,
            chat_type=chat_type or "chat",
            previous_messages=window_history(conversation_history, self._history_window),
            system_context=system_context,
        )
        logger.debug(
            f"Assembled request: model={model}, prompt_len={len(prompt)}, "
            f"history={len(payload.previous_messages)}, attachments={len(attachments)}"
        )
        return payload

    async def build_contract_context(self, contract_number: str) -> str | None:
        if self._lookup is None:
            return None
        try:
            contract = await self._lookup.fetch_contract(contract_number)
        except Exception as ex:
            logger.warning(f"Contract context unavailable for {contract_number}: {ex}")
            return None
        if contract is None:
            logger.info(f"Contract {contract_number} not found; continuing without contract context")
            return None

        vendor_siblings: list[ContractRecord] = []
        if contract.vendor_name:
            try:
                vendor_siblings = await self._lookup.fetch_contracts_by(
                    "vendor_name", contract.vendor_name, contract.contract_number, self._sibling_limit
                )
            except Exception as ex:
                logger.warning(f"Vendor contracts unavailable for {contract.vendor_name!r}: {ex}")

        department_siblings: list[ContractRecord] = []
        if contract.department_facility:
            try:
                department_siblings = await self._lookup.fetch_contracts_by(
                    "department_facility",
                    contract.department_facility,
                    contract.contract_number,
                    self._sibling_limit,
                )
            except Exception as ex:
                logger.warning(f"Department contracts unavailable for {contract.department_facility!r}: {ex}")

        return format_contract_context(
            contract,
            vendor_siblings[: self._sibling_limit],
            department_siblings[: self._sibling_limit],
        )
