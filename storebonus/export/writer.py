# ==============================================================================
# storebonus/export/writer.py
# ------------------------------------------------------------------------------
# Builds the downloadable bonus workbook: one sheet per selected person,
# filled into the role's template when there is one, plus the repurchase
# matrix sheet.
# ==============================================================================

import io
import logging
import re
from copy import copy

from openpyxl import Workbook
from openpyxl.cell.cell import MergedCell
from openpyxl.utils import get_column_letter

from storebonus.calculator.aggregation import build_repurchase_matrix, sorted_people, summarize_person
from storebonus.calculator.schema import NO_DEVELOPER, ROLE_LABELS, Stage1Status, StaffRole
from .styles import (
    BOLD_FONT, DATA_FONT, DEVELOPER_FILL, DEVELOPER_FONT, DOTTED_BORDER, HEADER_BORDER, HEADER_FILL,
    RETURN_BOLD_FONT, RETURN_FONT, RIGHT, SECTION_BORDER, SECTION_FILL, SECTION_FONT, SECTION_NAME_BORDER,
    SELLER_FILL, SELLER_FONT, TITLE_FONT,
)
from .templates import get_mapping, get_template, load_template_sheet

MATRIX_SHEET_TITLE = '回購總表'
SALES_HEADERS = ['分類', '日期', '客戶編號', '客戶名稱', '品項編號', '品名', '數量', '金額', '計算點數', '備註']
REWARD_HEADERS = ['分類', '日期', '客戶編號', '品項編號', '品名', '數量', '備註', '獎勵']
MATRIX_HEADERS = ['銷售人員', '分類', '日期', '客戶', '品項', '品名', '狀態', '回購點數']
MAX_SHEET_TITLE = 31


# --- Helpers ---

def format_customer_id(customer_id):
    """Drops the '00' prefix POS systems put on member numbers."""
    if not customer_id:
        return ''
    return customer_id[2:] if customer_id.startswith('00') else customer_id


def sheet_title(name, taken):
    """A valid, unused worksheet title for ``name``."""
    base = re.sub(r'[\[\]:*?/\\]', '_', name or 'Sheet').strip("'")[:MAX_SHEET_TITLE] or 'Sheet'
    title, n = base, 2
    while title in taken:
        suffix = f" ({n})"
        title = base[:MAX_SHEET_TITLE - len(suffix)] + suffix
        n += 1
    taken.add(title)
    return title


def copy_style(source, target):
    if source.has_style:
        target.font = copy(source.font)
        target.fill = copy(source.fill)
        target.border = copy(source.border)
        target.alignment = copy(source.alignment)
        target.number_format = source.number_format
        target.protection = copy(source.protection)


def _anchor(ws, coordinate):
    """The writable cell for a coordinate, following merged ranges to their top-left."""
    for merged in ws.merged_cells.ranges:
        if coordinate in merged:
            return ws.cell(row=merged.min_row, column=merged.min_col)
    return ws[coordinate]


def _line_note(line):
    row = line.row
    note = '' if row.status == Stage1Status.DEVELOP else row.status.value
    if line.incoming:
        note = f"{note} ({line.origin_person})".strip()
    elif row.original_developer and row.original_developer != NO_DEVELOPER:
        note = f"{note} / {row.original_developer}".strip(' /')
    return note


def _sales_values(line):
    row = line.row
    return {
        'category': row.category,
        'date': row.date,
        'customer_id': format_customer_id(row.customer_id),
        'customer_name': row.customer_name,
        'item_id': row.item_id,
        'item_name': row.item_name,
        'quantity': row.quantity,
        'amount': row.amount,
        'points': line.points,
        'note': _line_note(line),
    }


def _reward_values(row):
    return {
        'reward_category': row.category,
        'reward_date': row.display_date,
        'reward_customer_id': format_customer_id(row.customer_id),
        'reward_item_id': row.item_id,
        'reward_item_name': row.item_name,
        'reward_quantity': row.quantity,
        'reward_note': row.note,
        'reward_value': row.display_value(),
    }


def _stat_values(summary, report_date):
    return {
        'store_name_cell': summary.store_name,
        'staff_id_cell': summary.staff_id,
        'staff_name_cell': summary.person,
        'report_date_cell': report_date,
        'role_cell': ROLE_LABELS[summary.role],
        'total_points_cell': summary.total_points,
        'own_points_cell': summary.own_points,
        'incoming_points_cell': summary.incoming_points,
        'develop_points_cell': summary.develop_points,
        'return_points_cell': summary.return_points,
        'points_standard_cell': summary.points_standard,
        'points_gap_cell': summary.points_gap,
        'cosmetic_total_cell': summary.cosmetic_total,
        'cosmetic_standard_cell': summary.cosmetic_standard,
        'cosmetic_gap_cell': summary.cosmetic_gap,
        'cash_reward_cell': summary.cash_reward,
        'voucher_count_cell': summary.voucher_count,
        'dispensing_self_paid_cell': summary.dispensing_self_paid,
        'dispensing_service_cell': summary.dispensing_service,
        'dispensing_bonus_cell': summary.dispensing_bonus,
    }


def load_role_templates():
    """{role: (worksheet, mapping)} for every role with a readable template."""
    templates = {}
    for role in (StaffRole.SALES, StaffRole.PHARMACIST):
        record = get_template(role)
        sheet = load_template_sheet(record)
        if sheet is not None:
            templates[role] = (sheet, get_mapping(record))
    return templates


# --- Exporter ---

class ReportExporter:
    """
    Builds the complete workbook in memory. Nothing is returned until every
    sheet has been written, so a failure never yields a partial file.
    """

    def __init__(self, config, staff=None, templates=None, report_date=''):
        self.config = config
        self.staff = staff or {}
        self.templates = templates or {}
        self.report_date = report_date or ''

    def build(self, processed, people=None):
        """
        Args:
            processed (dict): person -> PersonSheet.
            people (iterable): names to export; everyone by default.

        Returns:
            bytes: the .xlsx file.
        """
        selected = [p for p in (people if people is not None else processed) if p in processed]
        ordered = sorted_people(selected, processed, self.staff)
        logging.info(f"Building export for {len(ordered)} people.")

        wb = Workbook()
        wb.remove(wb.active)
        taken = {MATRIX_SHEET_TITLE}
        for person in ordered:
            summary = summarize_person(processed, person, self.config, self.staff)
            sheet = processed[person]
            title = sheet_title(person, taken)
            template = self.templates.get(sheet.role)
            if template is not None:
                self._write_template_sheet(wb, title, template, summary, sheet)
            else:
                self._write_plain_sheet(wb.create_sheet(title), summary, sheet)

        matrix = build_repurchase_matrix(processed, self.staff, people=ordered)
        self._write_matrix_sheet(wb.create_sheet(MATRIX_SHEET_TITLE), matrix)

        buffer = io.BytesIO()
        wb.save(buffer)
        logging.info(f"Export complete: {len(wb.sheetnames)} sheets.")
        return buffer.getvalue()

    # --- Template mode ---

    def _clone_template(self, wb, title, template_ws):
        ws = wb.create_sheet(title)
        for row in template_ws.iter_rows():
            for cell in row:
                if isinstance(cell, MergedCell):
                    continue
                target = ws.cell(row=cell.row, column=cell.column, value=cell.value)
                copy_style(cell, target)
        for key, dim in template_ws.column_dimensions.items():
            if dim.width:
                ws.column_dimensions[key].width = dim.width
        for idx, dim in template_ws.row_dimensions.items():
            if dim.height:
                ws.row_dimensions[idx].height = dim.height
        for merged in template_ws.merged_cells.ranges:
            ws.merge_cells(str(merged))
        return ws

    def _write_list(self, ws, template_ws, start_row, style_row, columns, values_list):
        height = template_ws.row_dimensions[style_row].height
        for offset, values in enumerate(values_list):
            row_num = start_row + offset
            for field, column in columns:
                target = _anchor(ws, f"{column}{row_num}")
                target.value = values.get(field)
                copy_style(template_ws[f"{column}{style_row}"], target)
            if height:
                ws.row_dimensions[row_num].height = height
        return start_row + len(values_list)

    def _write_template_sheet(self, wb, title, template, summary, sheet):
        template_ws, mapping = template
        ws = self._clone_template(wb, title, template_ws)

        stats = _stat_values(summary, self.report_date)
        for field, coordinate in mapping.stat_cells():
            _anchor(ws, coordinate).value = stats[field]

        next_row = self._write_list(ws, template_ws, mapping.start_row, mapping.start_row,
                                    mapping.sales_columns(), [_sales_values(l) for l in summary.lines])

        if summary.role != StaffRole.PHARMACIST and mapping.reward_columns():
            rewards = [_reward_values(r) for r in sheet.stage2 if not r.is_deleted]
            start = mapping.rewards_start_row or next_row + 1
            style_row = mapping.rewards_start_row or mapping.start_row
            self._write_list(ws, template_ws, start, style_row, mapping.reward_columns(), rewards)
        return ws

    # --- Plain mode ---

    def _header_row(self, ws, values):
        ws.append(values)
        for cell in ws[ws.max_row]:
            cell.font = BOLD_FONT

    def _write_plain_sheet(self, ws, summary, sheet):
        ws.append([f"銷售人員: {summary.person}", f"職位: {ROLE_LABELS[summary.role]}",
                   f"日期: {self.report_date}"])
        ws['A1'].font = TITLE_FONT
        ws.append([])

        ws.append(['--- 點數表 ---'])
        self._header_row(ws, SALES_HEADERS)
        for line in summary.lines:
            values = _sales_values(line)
            ws.append([values[k] for k in ('category', 'date', 'customer_id', 'customer_name', 'item_id',
                                           'item_name', 'quantity', 'amount', 'points', 'note')])
        ws.append([])

        ws.append(['--- 獎勵/調劑 ---'])
        self._header_row(ws, REWARD_HEADERS)
        for row in sheet.stage2:
            if row.is_deleted:
                continue
            values = _reward_values(row)
            ws.append([values[k] for k in ('reward_category', 'reward_date', 'reward_customer_id', 'reward_item_id',
                                           'reward_item_name', 'reward_quantity', 'reward_note', 'reward_value')])
        ws.append([])

        if summary.role != StaffRole.PHARMACIST:
            ws.append(['--- 美妝統計 ---'])
            self._header_row(ws, ['品牌', '金額'])
            for row in summary.cosmetic_rows:
                ws.append([row.category_name, row.sub_total])
            ws.append(['總計', summary.cosmetic_total])
            ws.append([])

        ws.append(['--- 統計 ---'])
        figures = [
            ('個人點數', summary.own_points),
            ('轉入退貨點數', summary.incoming_points),
            ('總點數', summary.total_points),
        ]
        if summary.points_standard is not None:
            figures += [('點數標準', summary.points_standard), ('點數差額', summary.points_gap)]
        if summary.role == StaffRole.PHARMACIST:
            figures += [
                ('自費調劑', summary.dispensing_self_paid),
                ('藥事服務費', summary.dispensing_service),
                ('調劑獎金', summary.dispensing_bonus),
            ]
        else:
            figures += [('現金獎勵', summary.cash_reward), ('禮券張數', summary.voucher_count)]
            if summary.cosmetic_standard is not None:
                figures += [('美妝標準', summary.cosmetic_standard), ('美妝差額', summary.cosmetic_gap)]
        for label, value in figures:
            ws.append([label, value])
            ws.cell(row=ws.max_row, column=1).font = BOLD_FONT

        for col in range(1, len(SALES_HEADERS) + 1):
            ws.column_dimensions[get_column_letter(col)].width = 14

    # --- Repurchase matrix ---

    def _write_matrix_sheet(self, ws, matrix):
        ws.append(MATRIX_HEADERS + [f"{d} (開發)" for d in matrix.developers])
        for cell in ws[1]:
            cell.font = BOLD_FONT
            cell.fill = HEADER_FILL
            cell.border = HEADER_BORDER
        ws.cell(row=1, column=8).fill = SELLER_FILL
        ws.cell(row=1, column=8).font = SELLER_FONT

        for section in matrix.sections:
            totals = [section.developer_total(d) for d in matrix.developers]
            ws.append([section.seller, 'Subtotal', '', '', '', '', '', section.seller_total]
                      + [t if t else '' for t in totals])
            row_num = ws.max_row
            name_cell = ws.cell(row=row_num, column=1)
            name_cell.font = SECTION_FONT
            name_cell.fill = SECTION_FILL
            name_cell.border = SECTION_NAME_BORDER
            for col in range(8, 9 + len(matrix.developers)):
                cell = ws.cell(row=row_num, column=col)
                cell.font = BOLD_FONT
                cell.alignment = RIGHT
                cell.border = SECTION_BORDER
                if col == 8:
                    cell.fill, cell.font = SELLER_FILL, SELLER_FONT
                elif cell.value not in (None, ''):
                    cell.fill, cell.font = DEVELOPER_FILL, DEVELOPER_FONT

            for line in section.lines:
                row = line.row
                is_return = row.status == Stage1Status.RETURN
                ws.append(['', row.category, row.date, format_customer_id(row.customer_id), row.item_id,
                           row.item_name, row.repurchase_type or row.status.value, line.seller_points]
                          + [line.developer_points if d == line.developer else '' for d in matrix.developers])
                row_num = ws.max_row
                for col in range(1, 9 + len(matrix.developers)):
                    cell = ws.cell(row=row_num, column=col)
                    cell.font = RETURN_FONT if is_return else DATA_FONT
                    cell.border = DOTTED_BORDER
                seller_cell = ws.cell(row=row_num, column=8)
                seller_cell.font = RETURN_BOLD_FONT if is_return else SELLER_FONT
                seller_cell.fill = SELLER_FILL
                for i, developer in enumerate(matrix.developers):
                    if developer == line.developer:
                        cell = ws.cell(row=row_num, column=9 + i)
                        cell.font = RETURN_BOLD_FONT if is_return else DEVELOPER_FONT
                        cell.fill = DEVELOPER_FILL
            ws.append([])
