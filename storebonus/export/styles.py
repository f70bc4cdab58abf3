# ==============================================================================
# storebonus/export/styles.py
# ------------------------------------------------------------------------------
# Fonts, fills and borders shared by the plain report and the repurchase matrix.
# ==============================================================================

from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

# ---------------------------------------------------------------------------
# Color constants
# ---------------------------------------------------------------------------
HEADER_GRAY = "EEEEEE"
SECTION_SLATE = "F1F5F9"
SELLER_AMBER_BG = "FFF7ED"
SELLER_AMBER = "B45309"
DEVELOPER_VIOLET_BG = "F5F3FF"
DEVELOPER_VIOLET = "6D28D9"
RETURN_RED = "DC2626"
DOTTED_GRAY = "CBD5E1"
BLACK = "000000"

# ---------------------------------------------------------------------------
# Fonts
# ---------------------------------------------------------------------------
BOLD_FONT = Font(bold=True)
TITLE_FONT = Font(bold=True, size=12)
SECTION_FONT = Font(bold=True, size=12)
DATA_FONT = Font(color=BLACK)
RETURN_FONT = Font(color=RETURN_RED)
SELLER_FONT = Font(bold=True, color=SELLER_AMBER)
DEVELOPER_FONT = Font(bold=True, color=DEVELOPER_VIOLET)
RETURN_BOLD_FONT = Font(bold=True, color=RETURN_RED)

# ---------------------------------------------------------------------------
# Fills
# ---------------------------------------------------------------------------
HEADER_FILL = PatternFill(start_color=HEADER_GRAY, end_color=HEADER_GRAY, fill_type="solid")
SECTION_FILL = PatternFill(start_color=SECTION_SLATE, end_color=SECTION_SLATE, fill_type="solid")
SELLER_FILL = PatternFill(start_color=SELLER_AMBER_BG, end_color=SELLER_AMBER_BG, fill_type="solid")
DEVELOPER_FILL = PatternFill(start_color=DEVELOPER_VIOLET_BG, end_color=DEVELOPER_VIOLET_BG, fill_type="solid")

# ---------------------------------------------------------------------------
# Borders
# ---------------------------------------------------------------------------
HEADER_BORDER = Border(bottom=Side(style="medium"))
SECTION_BORDER = Border(top=Side(style="medium"), bottom=Side(style="medium"))
SECTION_NAME_BORDER = Border(top=Side(style="medium"), bottom=Side(style="medium"), right=Side(style="thin"))
DOTTED_BORDER = Border(bottom=Side(style="dotted", color=DOTTED_GRAY))

# ---------------------------------------------------------------------------
# Alignments
# ---------------------------------------------------------------------------
RIGHT = Alignment(horizontal="right")
