import csv
import io
import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from customer_case_service import PROMOTED_FIELDS
from exceptions import ValidationError
from utils import get_ist_date

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'xlsx', 'csv'}
MAX_ROWS_READ = 10000

TEMPLATE_SHEET = 'Cases Template'
EXPORT_SHEET = 'Customer Cases'

SAMPLE_VALUES = [
    {
        'EMPID': 'EMP001',
        'customerName': 'Rajesh Kumar',
        'loanId': 'LN001234567',
        'loanAmount': '500000',
        'mobileNo': '9876543210',
        'dpd': '45',
        'outstandingAmount': '450000',
        'posAmount': '50000',
        'emiAmount': '15000',
        'pendingDues': '75000',
        'address': '123 MG Road, Sector 15, Gurgaon',
        'sanctionDate': '2023-01-15',
        'lastPaidAmount': '15000',
        'lastPaidDate': '2024-11-15',
        'paymentLink': 'https://pay.company.com/LN001234567',
        'branchName': 'Gurgaon Branch',
        'loanType': 'Personal Loan',
        'remarks': 'Cooperative customer',
    },
    {
        'EMPID': 'EMP002',
        'customerName': 'Sunita Sharma',
        'loanId': 'LN002345678',
        'loanAmount': '350000',
        'mobileNo': '9876543220',
        'dpd': '30',
        'outstandingAmount': '195000',
        'posAmount': '155000',
        'emiAmount': '12000',
        'pendingDues': '36000',
        'address': '456 Park Street, Mumbai',
        'sanctionDate': '2023-09-20',
        'lastPaidAmount': '12000',
        'lastPaidDate': '2024-02-10',
        'paymentLink': 'https://pay.company.com/LN002345678',
        'branchName': 'Mumbai Branch',
        'loanType': 'Home Loan',
        'remarks': 'Needs follow-up',
    },
]


def allowed_file(filename):
    return '.' in (filename or '') and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def cell_to_str(value) -> str:
    """Render a spreadsheet cell the way it was typed: 45.0 -> '45', dates -> YYYY-MM-DD."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.strftime('%Y-%m-%d')
    return str(value).strip()


def _autosize(sheet, headers):
    for index, header in enumerate(headers, start=1):
        sheet.column_dimensions[get_column_letter(index)].width = max(len(header) + 2, 15)


def _workbook_bytes(workbook) -> bytes:
    buffer = io.BytesIO()
    workbook.save(buffer)
    workbook.close()
    return buffer.getvalue()


def decode_csv(content: bytes) -> str:
    """Decode CSV bytes as UTF-8, falling back to the Windows code page Excel uses for "CSV" exports."""
    try:
        return content.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.warning("⚠️ CSV file is not UTF-8, trying cp1252")
    try:
        return content.decode('cp1252')
    except UnicodeDecodeError:
        raise ValidationError('CSV file must be UTF-8 encoded')


def read_sheet_rows(filename: str, stream) -> List[List[Any]]:
    """Read the first sheet of an .xlsx upload, or a .csv upload, as a list of rows."""
    if not allowed_file(filename):
        raise ValidationError('Please upload a valid Excel file (.xlsx) or CSV file')

    extension = filename.rsplit('.', 1)[1].lower()
    rows = []

    if extension == 'csv':
        content = stream.read()
        if isinstance(content, bytes):
            content = decode_csv(content)
        for row_num, row in enumerate(csv.reader(io.StringIO(content))):
            if row_num >= MAX_ROWS_READ:
                logger.warning(f"⚠️ File contains more than {MAX_ROWS_READ} rows. Only processing first {MAX_ROWS_READ}.")
                break
            rows.append(row)
        return rows

    try:
        workbook = openpyxl.load_workbook(io.BytesIO(stream.read()), read_only=True, data_only=True)
    except Exception as e:
        logger.error(f"Error reading Excel file: {e}")
        raise ValidationError(f'Failed to parse Excel file: {e}')

    sheet = workbook.worksheets[0]
    for row_num, row in enumerate(sheet.iter_rows(values_only=True)):
        if row_num >= MAX_ROWS_READ:
            logger.warning(f"⚠️ File contains more than {MAX_ROWS_READ} rows. Only processing first {MAX_ROWS_READ}.")
            break
        rows.append(list(row))
    workbook.close()
    return rows


def generate_template(columns: List[Dict[str, Any]]) -> bytes:
    """Build the case upload template: EMPID plus one column per display name, with two sample rows."""
    headers = ['EMPID'] + [col['display_name'] for col in columns]

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = TEMPLATE_SHEET
    sheet.append(headers)
    for cell in sheet[1]:
        cell.font = Font(bold=True)

    for sample in SAMPLE_VALUES:
        sheet.append([sample['EMPID']] + [sample.get(col['column_name'], '') for col in columns])

    _autosize(sheet, headers)
    return _workbook_bytes(workbook)


def parse_case_file(filename: str, stream, columns: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    """Parse an uploaded case sheet into rows keyed by column name.

    Headers are matched to column display names case-insensitively;
    unknown headers are ignored and rows without an EMPID are skipped.
    """
    rows = read_sheet_rows(filename, stream)
    if len(rows) < 2:
        raise ValidationError('Excel file is empty or has no data rows')

    headers = [cell_to_str(h) for h in rows[0]]
    lowered = [h.lower() for h in headers]
    if 'empid' not in lowered:
        raise ValidationError('EMPID column not found in Excel file')
    empid_index = lowered.index('empid')

    by_display = {col['display_name'].lower().strip(): col['column_name'] for col in columns}
    header_map = {}
    for index, header in enumerate(lowered):
        if index != empid_index and header in by_display:
            header_map[index] = by_display[header]

    parsed = []
    for row in rows[1:]:
        if not row or empid_index >= len(row):
            continue
        empid = cell_to_str(row[empid_index])
        if not empid:
            continue
        row_data = {'EMPID': empid}
        for index, column_name in header_map.items():
            row_data[column_name] = cell_to_str(row[index]) if index < len(row) else ''
        parsed.append(row_data)

    return parsed


def validate_case_data(row: Dict[str, str], columns: List[Dict[str, Any]]) -> Tuple[bool, List[str]]:
    errors = []

    if not (row.get('EMPID') or '').strip():
        errors.append('EMPID is required')

    display_names = {col['column_name']: col['display_name'] for col in columns}
    for column_name in ('customerName', 'loanId'):
        if not (row.get(column_name) or '').strip():
            errors.append(f"{display_names.get(column_name, column_name)} is required")

    mobile = row.get('mobileNo')
    if mobile and not re.fullmatch(r'\d{10}', re.sub(r'\D', '', mobile)):
        errors.append('Invalid mobile number format')

    dpd = row.get('dpd')
    if dpd and not re.match(r'\s*[+-]?\d', dpd):
        errors.append('DPD must be a number')

    return len(errors) == 0, errors


def export_cases_to_excel(cases: List[Dict[str, Any]], columns: List[Dict[str, Any]]) -> Tuple[bytes, str]:
    """Export cases using the configured columns. Returns (content, filename)."""
    headers = [col['display_name'] for col in columns] + ['Status', 'Telecaller']

    workbook = openpyxl.Workbook()
    sheet = workbook.active
    sheet.title = EXPORT_SHEET
    sheet.append(headers)
    for cell in sheet[1]:
        cell.font = Font(bold=True)

    for case in cases:
        case_data = case.get('case_data') or {}
        values = []
        for col in columns:
            name = col['column_name']
            value = case_data.get(name)
            if value in (None, ''):
                value = case.get(PROMOTED_FIELDS.get(name, name))
            values.append(value if value is not None else '')
        telecaller = case.get('telecaller') or {}
        values.append(case.get('status') or '')
        values.append(telecaller.get('name') or '')
        sheet.append(values)

    _autosize(sheet, headers)
    return _workbook_bytes(workbook), f"customer_cases_{get_ist_date()}.xlsx"


def parse_employee_file(filename: str, stream) -> List[Dict[str, str]]:
    """Read an employee sheet as header -> value dicts, skipping blank rows."""
    rows = read_sheet_rows(filename, stream)
    if len(rows) < 2:
        raise ValidationError('File is empty or has no data rows')

    headers = [cell_to_str(h) for h in rows[0]]
    data = []
    for row in rows[1:]:
        row_data = {}
        for index, header in enumerate(headers):
            if header and index < len(row):
                value = cell_to_str(row[index])
                if value:
                    row_data[header] = value
        if row_data:
            data.append(row_data)
    return data
