from __future__ import annotations

from typing import Protocol, runtime_checkable

from loguru import logger

from nysgpt_chat.models import BillRecord, ContractRecord, normalize_bill_number
from nysgpt_chat.supabase_rest import SupabaseRestClient, eq, in_, neq, not_in

_BILL_COLUMNS = "bill_id,bill_number,title,status_desc,description,committee,status_date"


def _code_variants(code: str) -> list[str]:
    """The code as written and its zero-stripped form, without duplicates."""
    upper = code.strip().upper()
    normalized = normalize_bill_number(upper)
    return [upper] if normalized == upper else [upper, normalized]


@runtime_checkable
class LookupCollaborator(Protocol):
    async def fetch_bills_by_codes(self, codes: list[str]) -> dict[str, BillRecord]:
        """Return matched bills keyed by the requested code. Unmatched codes are absent."""
        ...

    async def fetch_bills_by_group(self, group_key: str, exclude_code: str, limit: int) -> list[BillRecord]: ...

    async def fetch_contract(self, contract_number: str) -> ContractRecord | None: ...

    async def fetch_contracts_by(
        self,
        column: str,
        value: str,
        exclude_number: str,
        limit: int,
    ) -> list[ContractRecord]: ...


class SupabaseLookup:
    def __init__(self, rest: SupabaseRestClient):
        self._rest = rest

    async def fetch_bills_by_codes(self, codes: list[str]) -> dict[str, BillRecord]:
        if not codes:
            return {}
        wanted: dict[str, str] = {}
        variants: list[str] = []
        for code in codes:
            upper = code.upper()
            wanted.setdefault(normalize_bill_number(upper), upper)
            for variant in _code_variants(upper):
                if variant not in variants:
                    variants.append(variant)

        rows = await self._rest.select(
            "Bills",
            columns=_BILL_COLUMNS,
            filters={"bill_number": in_(variants)},
        )
        found: dict[str, BillRecord] = {}
        for row in rows:
            try:
                record = BillRecord.from_row(row)
            except ValueError as ex:
                logger.warning(f"Skipping malformed bill row: {ex}")
                continue
            requested = wanted.get(normalize_bill_number(record.bill_number))
            if requested is not None and requested not in found:
                found[requested] = record
        return found

    async def fetch_bills_by_group(self, group_key: str, exclude_code: str, limit: int) -> list[BillRecord]:
        rows = await self._rest.select(
            "Bills",
            columns=_BILL_COLUMNS,
            filters={"committee": eq(group_key), "bill_number": not_in(_code_variants(exclude_code))},
            order="status_date.desc.nullslast",
            limit=limit,
        )
        records: list[BillRecord] = []
        for row in rows:
            try:
                records.append(BillRecord.from_row(row))
            except ValueError as ex:
                logger.warning(f"Skipping malformed bill row: {ex}")
        return records

    async def fetch_contract(self, contract_number: str) -> ContractRecord | None:
        rows = await self._rest.select(
            "Contracts",
            filters={"contract_number": eq(contract_number)},
            limit=1,
        )
        if not rows:
            return None
        return ContractRecord.from_row(rows[0])

    async def fetch_contracts_by(
        self,
        column: str,
        value: str,
        exclude_number: str,
        limit: int,
    ) -> list[ContractRecord]:
        rows = await self._rest.select(
            "Contracts",
            filters={column: eq(value), "contract_number": neq(exclude_number)},
            order="current_contract_amount.desc.nullslast",
            limit=limit,
        )
        records: list[ContractRecord] = []
        for row in rows:
            try:
                records.append(ContractRecord.from_row(row))
            except ValueError as ex:
                logger.warning(f"Skipping malformed contract row: {ex}")
        return records
