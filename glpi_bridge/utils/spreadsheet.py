"""
Excel (.xlsx) helpers for import files
Reads the first sheet as header + data rows and writes import templates
"""
import os
from datetime import date, datetime

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font


DATA_SHEET = 'Datos'
INSTRUCTIONS_SHEET = 'Instrucciones'


def _cell_to_text(value):
    if value is None:
        return ''
    if isinstance(value, datetime):
        if value.hour or value.minute or value.second:
            return value.strftime("%Y-%m-%d %H:%M:%S")
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_rows(path):
    """
    Read the first worksheet of an .xlsx file.

    The first row holds the column headers; every following row becomes a
    dict {header: text}. Rows with no value at all are skipped, and any
    other sheets (instructions, catalogs) are ignored.

    Args:
        path: Path to the workbook

    Returns:
        list: Row dicts in file order

    Raises:
        FileNotFoundError: If the file does not exist
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Import file not found: {path}")

    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header_row = next(rows, None)
        if header_row is None:
            return []
        headers = [_cell_to_text(h) for h in header_row]

        result = []
        for values in rows:
            texts = [_cell_to_text(v) for v in values]
            if not any(texts):
                continue
            row = {}
            for header, value in zip(headers, texts):
                if header:
                    row[header] = value
            result.append(row)
        return result
    finally:
        workbook.close()


def write_template(path, kind):
    """
    Write an import template for an import kind.

    Sheet 'Datos' holds the header row and one example row; sheet
    'Instrucciones' describes every column.

    Args:
        path: Output .xlsx path
        kind: ImportKind

    Returns:
        str: The written path
    """
    columns = kind.columns()

    workbook = Workbook()
    data = workbook.active
    data.title = DATA_SHEET
    data.append([column for column, _, _, _ in columns])
    data.append([example for _, _, _, example in columns])
    for cell in data[1]:
        cell.font = Font(bold=True)
    for index, (column, _, _, _) in enumerate(columns, start=1):
        data.column_dimensions[data.cell(row=1, column=index).column_letter].width = max(14, len(column) + 4)

    instructions = workbook.create_sheet(INSTRUCTIONS_SHEET)
    instructions.append(['Campo', 'Descripción', 'Obligatorio', 'Ejemplo'])
    for cell in instructions[1]:
        cell.font = Font(bold=True)
    for column, description, required, example in columns:
        instructions.append([column, description, 'Sí' if required else 'No', example])
    instructions.append([])
    instructions.append([f"Tipo de importación: {kind.name} ({kind.itemtype})"])
    instructions.append(['Solo se lee la hoja "Datos"; borre la fila de ejemplo antes de importar.'])
    instructions.column_dimensions['A'].width = 20
    instructions.column_dimensions['B'].width = 60

    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    workbook.save(path)
    return path


def write_all_templates(directory, kinds):
    """
    Write one template per import kind into a directory.

    Returns:
        list: Written file paths
    """
    paths = []
    for kind in kinds:
        paths.append(write_template(os.path.join(directory, f"{kind.name}.xlsx"), kind))
    return paths
