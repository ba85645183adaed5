# ui/table_model.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, List
from PySide6.QtCore import Qt, QAbstractTableModel, QModelIndex


@dataclass(frozen=True)
class Column:
    header: str
    value: Callable[[Any], Any]


def display(v) -> str:
    if v is None:
        return ""
    if isinstance(v, datetime):
        return v.strftime("%Y-%m-%d %H:%M")
    if isinstance(v, date):
        return v.isoformat()
    return str(v)


class EntityTableModel(QAbstractTableModel):
    """
    Read-only model over one page of records.
    Columns are declared per screen; edits happen in the form, never in the grid.
    """

    def __init__(self, columns: List[Column], rows: List[Any] | None = None, parent=None):
        super().__init__(parent)
        self.columns = columns
        self.rows: List[Any] = rows or []

    # external helpers
    def set_rows(self, rows: List[Any] | None):
        self.beginResetModel()
        self.rows = list(rows or [])
        self.endResetModel()

    def at(self, row: int) -> Any:
        return self.rows[row]

    # Qt model API
    def rowCount(self, parent=QModelIndex()) -> int:
        return 0 if parent.isValid() else len(self.rows)

    def columnCount(self, parent=QModelIndex()) -> int:
        return 0 if parent.isValid() else len(self.columns)

    def data(self, idx: QModelIndex, role=Qt.DisplayRole):
        if not idx.isValid() or idx.row() < 0 or idx.row() >= len(self.rows):
            return None
        if role in (Qt.DisplayRole, Qt.EditRole):
            text = display(self.columns[idx.column()].value(self.rows[idx.row()]))
            return text[:120]
        return None

    def headerData(self, section: int, orientation, role=Qt.DisplayRole):
        if role != Qt.DisplayRole:
            return None
        if orientation == Qt.Horizontal:
            return self.columns[section].header
        return section + 1  # row header: 1-based

    def flags(self, idx: QModelIndex):
        if not idx.isValid():
            return Qt.ItemIsEnabled
        # read-only (edits happen in the form)
        return Qt.ItemIsEnabled | Qt.ItemIsSelectable
