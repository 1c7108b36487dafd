"""
Financial table extraction from Textract AnalyzeDocument blocks.

Textract returns a flat list of blocks linked by CHILD relationships:
TABLE -> CELL -> WORD. This module rebuilds tables, finds the P&L, maps
its columns to periods (years, TTM, LTM) and its rows to canonical line
items.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence

from cim_extract.parsing.schema import coerce_number

logger = logging.getLogger(__name__)

Block = Dict[str, Any]

PNL_INDICATORS = (
    "income statement",
    "profit and loss",
    "p&l statement",
    "statement of operations",
    "statement of income",
    "revenue",
    "operating income",
    "ebitda",
    "net income",
)

TABLE_TYPE_INDICATORS = {
    "income_statement": ("income statement", "profit and loss", "p&l", "revenue", "ebitda"),
    "balance_sheet": ("balance sheet", "assets", "liabilities", "equity", "current assets"),
    "cash_flow": ("cash flow", "operating activities", "investing activities", "financing activities"),
    "metrics": ("key metrics", "kpi", "performance metrics", "operational metrics"),
}

MIN_INDICATOR_MATCHES = 2


def _patterns(*expressions: str) -> List[Pattern[str]]:
    return [re.compile(expression, re.IGNORECASE) for expression in expressions]


REVENUE_PATTERNS = _patterns(
    r"^(total\s+)?revenue",
    r"^(total\s+)?sales",
    r"^net\s+revenue",
    r"^gross\s+revenue",
    r"^(gross\s+)?income\b(?!\s+from)",
    r"^top\s+line",
)
COMMISSION_PATTERNS = _patterns(r"^commission\s+(income|revenue)")
COST_OF_REVENUE_PATTERNS = _patterns(
    r"^(cost\s+of\s+goods\s+sold|cogs)",
    r"^cost\s+of\s+sales",
    r"^cost\s+of\s+revenue",
    r"^direct\s+cost",
)
GROSS_PROFIT_PATTERNS = _patterns(r"^gross\s+profit", r"^gross\s+margin")
OPEX_PATTERNS = _patterns(
    r"^(total\s+)?operating\s+expense",
    r"^(total\s+)?expense",
    r"^sg&a",
    r"^general\s+(&|and)\s+administrative",
    r"^selling\s+expense",
    r"^marketing\s+expense",
)
EBITDA_PATTERNS = _patterns(r"^(adjusted\s+|normalized\s+)?ebitda")
OPERATING_INCOME_PATTERNS = _patterns(
    r"^operating\s+(income|profit)",
    r"^(income|profit)\s+from\s+operations",
    r"^ebit(?!da)",
)
DEPRECIATION_PATTERN = re.compile(r"depreciation|amortization|d&a", re.IGNORECASE)
NET_INCOME_PATTERNS = _patterns(
    r"^net\s+(income|profit|earnings)",
    r"^(profit|loss)\s+after\s+tax",
    r"^bottom\s+line",
)
ADJUSTMENT_PATTERNS = _patterns(
    r"^add[\s\-:]?back",
    r"^adjustment",
    r"^one[\s\-]?time",
    r"^extraordinary",
    r"^non[\s\-]?recurring",
    r"^owner[\s\-]?(compensation|salary)",
)

_YEAR_RE = re.compile(r"(\d{4})")


@dataclass
class TableRow:
    label: str
    values: Dict[int, Optional[float]]  # column position -> value


@dataclass
class ExtractedTable:
    headers: List[str]
    rows: List[TableRow]

    @property
    def text(self) -> str:
        parts = list(self.headers)
        for row in self.rows:
            parts.append(row.label)
        return " ".join(parts)


@dataclass
class TableFinancials:
    """Line items pulled from the P&L table, keyed by period label."""

    periods: List[str] = field(default_factory=list)
    revenue: Dict[str, float] = field(default_factory=dict)
    commission_income: Dict[str, float] = field(default_factory=dict)
    cost_of_revenue: Dict[str, float] = field(default_factory=dict)
    gross_profit: Dict[str, float] = field(default_factory=dict)
    operating_expenses: Dict[str, float] = field(default_factory=dict)
    ebitda: Dict[str, float] = field(default_factory=dict)
    net_income: Dict[str, float] = field(default_factory=dict)
    adjustments: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.revenue or self.ebitda or self.net_income)

    def to_financial_data(self) -> Dict[str, Any]:
        """camelCase financialData fragment of the canonical schema."""
        return {
            "periods": list(self.periods),
            "revenue": dict(self.revenue),
            "commissionIncome": dict(self.commission_income),
            "costOfRevenue": dict(self.cost_of_revenue),
            "grossProfit": dict(self.gross_profit),
            "operatingExpenses": dict(self.operating_expenses),
            "ebitda": dict(self.ebitda),
            "netIncome": dict(self.net_income),
        }


class FinancialTableExtractor:
    """Rebuilds Textract tables and standardizes the P&L."""

    def __init__(self, blocks: Sequence[Block]):
        self.blocks = list(blocks)
        self._by_id = {block["Id"]: block for block in self.blocks if "Id" in block}

    # ------------------------------------------------------------------
    # Block navigation
    # ------------------------------------------------------------------

    def _children(self, block: Block, block_type: str) -> Iterable[Block]:
        for relationship in block.get("Relationships") or []:
            if relationship.get("Type") != "CHILD":
                continue
            for child_id in relationship.get("Ids", []):
                child = self._by_id.get(child_id)
                if child and child.get("BlockType") == block_type:
                    yield child

    def _cell_text(self, cell: Block) -> str:
        return " ".join(word.get("Text", "") for word in self._children(cell, "WORD")).strip()

    def tables(self) -> List[ExtractedTable]:
        return [self._build_table(block) for block in self.blocks if block.get("BlockType") == "TABLE"]

    def _build_table(self, table: Block) -> ExtractedTable:
        grid: Dict[int, Dict[int, str]] = {}
        for cell in self._children(table, "CELL"):
            row_index = cell.get("RowIndex", 0)
            column_index = cell.get("ColumnIndex", 0)
            grid.setdefault(row_index, {})[column_index] = self._cell_text(cell)

        # Positions are 0-based column indices; position 0 holds the row label
        header_cells = grid.get(1, {})
        width = max((column for cells in grid.values() for column in cells), default=0)
        headers = [header_cells.get(column, "") for column in range(1, width + 1)]

        rows = []
        for row_index in sorted(r for r in grid if r > 1):
            cells = grid[row_index]
            label = cells.get(1, "")
            if not label:
                continue
            values = {column - 1: coerce_number(text) for column, text in cells.items() if column > 1}
            rows.append(TableRow(label=label, values=values))

        return ExtractedTable(headers=headers, rows=rows)

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def extract_text(self) -> str:
        """LINE blocks in reading order (page, then top of bounding box)."""
        lines = [block for block in self.blocks if block.get("BlockType") == "LINE"]
        lines.sort(
            key=lambda block: (
                block.get("Page", 1),
                block.get("Geometry", {}).get("BoundingBox", {}).get("Top", 0.0),
            )
        )
        return "\n".join(block.get("Text", "") for block in lines)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    @staticmethod
    def _indicator_matches(text: str, indicators: Sequence[str]) -> int:
        lowered = text.lower()
        return sum(1 for indicator in indicators if indicator in lowered)

    def find_pnl_table(self) -> Optional[ExtractedTable]:
        for table in self.tables():
            if self._indicator_matches(table.text, PNL_INDICATORS) >= MIN_INDICATOR_MATCHES:
                return table
        return None

    @classmethod
    def identify_table_type(cls, table: ExtractedTable) -> Optional[str]:
        for table_type, indicators in TABLE_TYPE_INDICATORS.items():
            if cls._indicator_matches(table.text, indicators) >= MIN_INDICATOR_MATCHES:
                return table_type
        return None

    def extract_all_financial_tables(self) -> List[Dict[str, Any]]:
        """Every table that classifies as financial, with headers and row values."""
        result = []
        for table in self.tables():
            table_type = self.identify_table_type(table)
            if table_type:
                result.append({
                    "type": table_type,
                    "headers": table.headers,
                    "rows": [
                        {"label": row.label, "values": [row.values[k] for k in sorted(row.values)]}
                        for row in table.rows
                    ],
                })
        return result

    # ------------------------------------------------------------------
    # P&L standardization
    # ------------------------------------------------------------------

    @staticmethod
    def identify_period_columns(headers: Sequence[str]) -> Dict[str, int]:
        """Map period label -> column position (2021, FY2021, TTM, LTM)."""
        periods: Dict[str, int] = {}
        for position, header in enumerate(headers):
            if position == 0:
                continue
            year = _YEAR_RE.search(header)
            lowered = header.lower()
            if year:
                periods[year.group(1)] = position
            elif "ttm" in lowered:
                periods["TTM"] = position
            elif "ltm" in lowered:
                periods["LTM"] = position
        return periods

    def extract_pnl(self) -> TableFinancials:
        table = self.find_pnl_table()
        if table is None:
            logger.info("[TextractTables] No P&L table found")
            return TableFinancials()

        columns = self.identify_period_columns(table.headers)
        rows = table.rows
        financials = TableFinancials(
            periods=list(columns),
            revenue=self._first_row(rows, REVENUE_PATTERNS, columns),
            commission_income=self._first_row(rows, COMMISSION_PATTERNS, columns),
            cost_of_revenue=self._first_row(rows, COST_OF_REVENUE_PATTERNS, columns),
            gross_profit=self._first_row(rows, GROSS_PROFIT_PATTERNS, columns),
            operating_expenses=self._summed_rows(rows, OPEX_PATTERNS, columns),
            ebitda=self._ebitda(rows, columns),
            net_income=self._first_row(rows, NET_INCOME_PATTERNS, columns),
            adjustments=self._adjustments(rows, columns),
        )
        logger.info(
            f"[TextractTables] P&L periods={financials.periods} "
            f"revenue={bool(financials.revenue)} ebitda={bool(financials.ebitda)}"
        )
        return financials

    @staticmethod
    def _matches(label: str, patterns: Sequence[Pattern[str]]) -> bool:
        return any(pattern.search(label) for pattern in patterns)

    @staticmethod
    def _row_values(row: TableRow, columns: Dict[str, int]) -> Dict[str, float]:
        values = {}
        for period, position in columns.items():
            value = row.values.get(position)
            if value is not None:
                values[period] = value
        return values

    def _first_row(self, rows: Sequence[TableRow], patterns, columns) -> Dict[str, float]:
        for row in rows:
            if self._matches(row.label, patterns):
                return self._row_values(row, columns)
        return {}

    def _summed_rows(self, rows: Sequence[TableRow], patterns, columns) -> Dict[str, float]:
        matching = [row for row in rows if self._matches(row.label, patterns)]
        if not matching:
            return {}
        totals: Dict[str, float] = {}
        for row in matching:
            for period, value in self._row_values(row, columns).items():
                totals[period] = totals.get(period, 0.0) + value
        return totals

    def _ebitda(self, rows: Sequence[TableRow], columns) -> Dict[str, float]:
        explicit = self._first_row(rows, EBITDA_PATTERNS, columns)
        if explicit:
            return explicit

        # Operating income plus depreciation & amortization
        operating = self._first_row(rows, OPERATING_INCOME_PATTERNS, columns)
        if not operating:
            return {}
        depreciation_row = next((row for row in rows if DEPRECIATION_PATTERN.search(row.label)), None)
        depreciation = self._row_values(depreciation_row, columns) if depreciation_row else {}
        return {period: value + abs(depreciation.get(period, 0.0)) for period, value in operating.items()}

    def _adjustments(self, rows: Sequence[TableRow], columns) -> List[Dict[str, Any]]:
        return [
            {"label": row.label, "values": self._row_values(row, columns)}
            for row in rows
            if self._matches(row.label, ADJUSTMENT_PATTERNS)
        ]
