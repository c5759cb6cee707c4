# catalog_sync/importer/spreadsheet.py
# Upload readers: CSV / Excel → list of flat text rows.
from __future__ import annotations

import io
import zipfile
import logging
from typing import Dict, List, Sequence, Tuple

import pandas as pd

from catalog_sync.errors import ValidationError

logger = logging.getLogger("uvicorn.error")

PRODUCTS_SHEET = "Productos"
VARIANTS_SHEET = "Variantes"

PRODUCT_COLUMNS = [
    "nombre", "nombre_corto", "descripcion", "descripcion_corta", "marca_id",
    "subcategoria_id", "palabras_clave", "dimensiones", "especificaciones",
    "imagenes_url", "sku",
]
VARIANT_COLUMNS = [
    "producto_sku", "variante_nombre", "variante_nombre_visualizacion",
    "opcion_nombre", "opcion_nombre_visualizacion", "precio", "stock",
    "es_predeterminado", "sku", "imagenes_url",
]
# columns a sheet cannot be imported without
REQUIRED_COLUMNS = {
    PRODUCTS_SHEET: ("nombre",),
    VARIANTS_SHEET: ("producto_sku", "opcion_nombre"),
}


def frame_to_rows(df: pd.DataFrame) -> List[Dict[str, str]]:
    """
    Every row gets every column (missing cells → ""), values are stripped
    text, and rows with no content at all are dropped.
    """
    df = df.copy()
    df.columns = [str(c).strip() for c in df.columns]
    df = df.fillna("").astype(str)
    df = df.apply(lambda col: col.str.strip())
    # header-less trailing columns that carry nothing
    empty_unnamed = [c for c in df.columns if c.startswith("Unnamed:") and not df[c].any()]
    df = df.drop(columns=empty_unnamed)
    df = df[(df != "").any(axis=1)]
    return df.to_dict(orient="records")


def read_upload(filename: str, content: bytes) -> Tuple[List[str], List[Dict[str, str]]]:
    """CSV, or the first sheet of an Excel workbook → (columns, rows)."""
    name = (filename or "").lower()
    try:
        if name.endswith(".csv"):
            df = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False, skip_blank_lines=True)
        else:
            df = pd.read_excel(io.BytesIO(content), sheet_name=0, dtype=str, keep_default_na=False, engine="openpyxl")
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, ValueError, zipfile.BadZipFile) as e:
        logger.warning("[IMPORT] could not parse %s: %s", filename, e)
        raise ValidationError(f"Error parsing file {filename!r}")

    rows = frame_to_rows(df)
    if not rows:
        raise ValidationError("No data found in file")
    return [str(c).strip() for c in df.columns if not str(c).startswith("Unnamed:")], rows


def read_workbook_sheets(
    content: bytes, required: Sequence[str] = (PRODUCTS_SHEET, VARIANTS_SHEET)
) -> Dict[str, List[Dict[str, str]]]:
    try:
        sheets = pd.read_excel(io.BytesIO(content), sheet_name=None, dtype=str, keep_default_na=False, engine="openpyxl")
    except (ValueError, KeyError, OSError, zipfile.BadZipFile) as e:
        logger.warning("[IMPORT] unreadable workbook: %s", e)
        raise ValidationError("Error reading workbook")

    for name in required:
        if name not in sheets:
            raise ValidationError(f"Missing '{name}' sheet")
        columns = {str(c).strip() for c in sheets[name].columns}
        for col in REQUIRED_COLUMNS.get(name, ()):
            if col not in columns:
                raise ValidationError(f"Missing '{col}' column in '{name}'")
    return {name: frame_to_rows(df) for name, df in sheets.items()}


def build_template() -> bytes:
    """Empty import workbook with the two expected sheets and one example row each."""
    products = pd.DataFrame(
        [[
            "Silla Ejemplo", "Silla", "Silla de madera maciza", "Silla de madera",
            "", "", "silla, madera, comedor", "ancho: 45, altura: 90", "material: roble",
            "", "SIL-EJ",
        ]],
        columns=PRODUCT_COLUMNS,
    )
    variants = pd.DataFrame(
        [[
            "SIL-EJ", "Color", "Color", "Natural", "Natural", "1999.00", "10", "true", "SIL-EJ-NAT", "",
        ]],
        columns=VARIANT_COLUMNS,
    )
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        products.to_excel(writer, sheet_name=PRODUCTS_SHEET, index=False)
        variants.to_excel(writer, sheet_name=VARIANTS_SHEET, index=False)
    return buf.getvalue()
