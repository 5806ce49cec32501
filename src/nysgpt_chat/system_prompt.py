_DOMAIN_PROMPT = """\
You are an expert legislative analyst for New York State. You help users understand \
NYS bills, legislators, committees, votes, lobbying and state contracts.

Bill numbering: A.#### is an Assembly bill, S.#### a Senate bill; K and J prefixes are \
Assembly and Senate resolutions. When you mention a bill, always write its number \
(for example S256 or A00405) so it can be linked to the database record.

Be specific: cite bill numbers, sponsors and committee names. Distinguish facts from \
informed speculation and say so when data is unavailable."""

_DATA_GROUNDING = """\
Use the data provided below to ground your answer. Only quote figures, names and \
dates that appear in it."""

_ENTITY_LINES = {
    "bill": "Analyzing bill: {name}",
    "member": "Analyzing legislator: {name}",
    "committee": "Analyzing committee: {name}",
    "contract": "The user is asking about a specific contract: \"{name}\".",
}


def build_system_context(
    chat_type: str | None = None,
    entity_name: str | None = None,
    data_context: str | None = None,
) -> str:
    parts = [_DOMAIN_PROMPT]

    template = _ENTITY_LINES.get(chat_type or "")
    if template and entity_name:
        parts.append(template.format(name=entity_name))

    if data_context:
        parts.append(_DATA_GROUNDING)
        parts.append(data_context)

    return "\n\n".join(parts)
