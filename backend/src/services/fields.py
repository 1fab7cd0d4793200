"""Canonical output fields and the extraction prompt built from them.

Field names must match the column headers of the input CSV exactly: the
pipeline fills existing columns rather than adding new ones.
"""

from typing import Literal, TypedDict

FieldSource = Literal["input_csv", "separate_csv", "tech_pack"]


class FieldDefinition(TypedDict):
    field_name: str
    source: FieldSource
    extraction_logic: str
    examples: str


def _field(name: str, source: FieldSource, logic: str, examples: str = "") -> FieldDefinition:
    return FieldDefinition(field_name=name, source=source, extraction_logic=logic, examples=examples)


_PASS_THROUGH = "Pulled directly from the PLM export - already in input CSV"
_SEPARATE = "Information from separate CSV, not the tech pack - keep existing value"

FIELD_DEFINITIONS: list[FieldDefinition] = [
    _field("ITEM ID", "input_csv", _PASS_THROUGH),
    _field("FC NAME", "input_csv", _PASS_THROUGH),
    _field("FC COLOR", "input_csv", _PASS_THROUGH),
    _field("COO", "input_csv", _PASS_THROUGH),
    _field("MATERIAL CATEGORY", "separate_csv", _SEPARATE),
    _field("FILLING (OUTERWEAR)", "separate_csv", _SEPARATE),
    _field("FABRIC COO", "separate_csv", _SEPARATE),
    _field("CARE INSTRUCTIONS", "separate_csv", _SEPARATE),
    _field(
        "HPS / RISE",
        "tech_pack",
        "Return answer like '22'. Find in tech pack Measurements section, SPEC page, look at the "
        "bold column (size 4). For tops this is HPS (High Point Shoulder to hem). "
        "For bottoms this is Rise.",
        "22, 24.5, 18",
    ),
    _field(
        "SLEEVE LENGTH / INSEAM",
        "tech_pack",
        "Return answer like '22'. Find in tech pack Measurements section, SPEC page, bold column. "
        "For tops this is sleeve length. For bottoms this is inseam.",
        "22, 32, 26.5",
    ),
    _field(
        "LINING CONTENT",
        "tech_pack",
        "Return answer like '100% Polyester'. Find in BOM (Bill of Materials) section, look for "
        "interlining/lining fabric content. If no lining, return empty string.",
        "100% Polyester, 100% Cupro, 97% Polyester 3% Spandex",
    ),
    _field(
        "LEG OPENING",
        "tech_pack",
        "Return answer like '22'. Find in Measurements section, SPEC page, bold column. Only "
        "applicable for pants/bottoms. If not a bottom, return empty string.",
        "14, 16.5, 22",
    ),
    _field(
        "SHOULDER PADS",
        "tech_pack",
        "Return 'Yes' or 'No'. Check BOM (Bill of Materials) for any reference to shoulder pads.",
        "Yes, No",
    ),
    _field(
        "LINING",
        "tech_pack",
        "Return 'Yes' or 'No'. Check BOM (Bill of Materials) for any reference to lining fabric.",
        "Yes, No",
    ),
    _field(
        "POCKETS",
        "tech_pack",
        "Return 'Yes' or 'No'. Check BOM and visual inspection of garment sketches/photos "
        "for pockets.",
        "Yes, No",
    ),
    _field(
        "CLOSURES",
        "tech_pack",
        "Return one of: 'Zip', 'Hook & Eye', 'Buttons', 'None', 'Tie Belt', 'Snap Buttons', "
        "'Frogs', 'Belt', 'Hook & Bar'. Check BOM and visual inspection.",
        "Zip, Buttons, Hook & Eye, None",
    ),
    _field(
        "STANDARD PRODUCT LENGTH",
        "tech_pack",
        "Return one of: 'Cropped', 'Regular', or 'Long'. Determine via visual inspection of the "
        "garment photos/sketches.",
        "Cropped, Regular, Long",
    ),
    _field(
        "RTW FIT",
        "tech_pack",
        "Return one of: 'Regular', 'Fitted', 'Relaxed', or 'Oversized'. Determine via visual "
        "inspection of the garment fit.",
        "Regular, Fitted, Relaxed, Oversized",
    ),
    _field(
        "SLEEVE LENGTH",
        "tech_pack",
        "Return one of: 'Strapless', 'Sleeveless', 'Short Sleeve', '3/4 Sleeve', 'Long Sleeve', "
        "or 'One Shoulder'. Determine via visual inspection.",
        "Long Sleeve, Sleeveless, Short Sleeve",
    ),
    _field(
        "RISE",
        "tech_pack",
        "Return one of: 'Low', 'Mid', 'High', or 'Ultra-High'. For pants/bottoms only. "
        "Low = under 9 inches, Mid = 9-10.5 inches, High = 10.5-12 inches, Ultra-High = over "
        "12 inches. If not a bottom, return empty string.",
        "Low, Mid, High, Ultra-High",
    ),
    _field(
        "PANT FIT",
        "tech_pack",
        "Return one of: 'Skinny', 'Straight', 'Flare/Bootcut', 'Wide/Relaxed', or 'Maternity'. "
        "For pants only. If not pants, return empty string.",
        "Skinny, Straight, Wide/Relaxed",
    ),
    _field(
        "DRESS/SKIRT LENGTH",
        "tech_pack",
        "Return one of: 'Mini', 'Midi', or 'Maxi'. For dresses and skirts only. If not a "
        "dress/skirt, return empty string.",
        "Mini, Midi, Maxi",
    ),
    _field(
        "OCCASION (DRESSES ONLY)",
        "tech_pack",
        "Return one of: 'Daytime', 'Workwear', 'Evening', 'Vacation', 'Cocktail', or 'Wedding'. "
        "For dresses only. If not a dress, return empty string.",
        "Daytime, Workwear, Evening, Cocktail",
    ),
]

ITEM_ID_FIELD = "ITEM ID"
ARTIFACT_LINK_FIELD = "PDF_LINK"

# Model answers meaning "not applicable"; written to the output as "".
NOT_APPLICABLE_MARKERS = {"n/a", "na", "not applicable"}


def canonical_field_names() -> list[str]:
    return [f["field_name"] for f in FIELD_DEFINITIONS]


def tech_pack_field_names() -> list[str]:
    return [f["field_name"] for f in FIELD_DEFINITIONS if f["source"] == "tech_pack"]


def build_extraction_prompt() -> str:
    """Render the tech-pack field instructions into the extraction prompt."""
    tech_pack_fields = [f for f in FIELD_DEFINITIONS if f["source"] == "tech_pack"]
    lines = []
    for i, f in enumerate(tech_pack_fields, start=1):
        line = f'{i}. "{f["field_name"]}" - {f["extraction_logic"]}'
        if f["examples"]:
            line += f" Examples: {f['examples']}"
        lines.append(line)
    field_list = "\n".join(lines)
    example = ",\n".join(
        f'  "{f["field_name"]}": {{"value": "", "logic": "", "needs_review": false}}'
        for f in tech_pack_fields
    )
    return (
        "Extract data from this garment tech pack PDF. Return ONLY a JSON object - no other text.\n\n"
        "EXTRACTION GUIDELINES:\n"
        "- Measurements: Look in SPEC/Measurements section, use the BOLD column (size 4)\n"
        "- Materials: Check the BOM (Bill of Materials) section\n"
        "- Visual attributes: Examine garment photos and sketches\n"
        '- If not applicable or not found: use empty string ""\n'
        '- NEVER use "N/A" - use "" instead\n'
        "- Set needs_review to true when you are unsure of a value\n\n"
        f"FIELDS TO EXTRACT:\n{field_list}\n\n"
        "RESPONSE FORMAT - Return ONLY this JSON structure, starting with { and ending with }:\n"
        f"{{\n{example}\n}}\n\n"
        "CRITICAL: Your response must start with { and end with } - no explanatory text "
        "before or after."
    )
