from __future__ import annotations
import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, List

from PySide6.QtCore import Qt, QTimer
from PySide6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QLineEdit, QLabel, QSplitter,
    QFormLayout, QTableView, QStatusBar, QTabWidget, QPushButton, QComboBox, QFrame, QAbstractItemView
)

from config import load_settings
from controllers import EntityController, ViewState, build_controllers
from database import init_db, make_engine, make_session_factory, ping
from domain import (
    AppointmentDTO, AppointmentSort, DepartmentDTO, DepartmentSort, DoctorDTO, DoctorSort,
    MedicalInventoryDTO, MedicalInventorySort, PatientDTO, PatientFeedbackDTO, PatientFeedbackSort,
    PatientSort, PrescriptionDTO, PrescriptionItemDTO, PrescriptionSort,
)
from models import Base
from services import build_services
from ui.table_model import Column, EntityTableModel, display

logger = logging.getLogger(__name__)

PALETTE = {
    "blue": "#2563EB",
    "ok": "#006400",
    "error": "#B00020",
}


# ------------------ form parsing ------------------

def parse_text(s: str) -> str | None:
    return s.strip() or None


def parse_int(s: str) -> int | None:
    s = s.strip()
    if not s: return None
    try: return int(s)
    except ValueError: raise ValueError(f"'{s}' is not a whole number.") from None


def parse_decimal(s: str) -> Decimal | None:
    s = s.strip()
    if not s: return None
    try: return Decimal(s)
    except InvalidOperation: raise ValueError(f"'{s}' is not a number.") from None


def parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s: return None
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y"):
        try: return datetime.strptime(s, fmt).date()
        except ValueError: pass
    raise ValueError("Invalid date. Use YYYY-MM-DD, MM/DD/YYYY, or DD/MM/YYYY.")


def parse_datetime(s: str) -> datetime | None:
    s = (s or "").strip()
    if not s: return None
    for fmt in ("%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M:%S"):
        try: return datetime.strptime(s, fmt)
        except ValueError: pass
    raise ValueError("Invalid date and time. Use YYYY-MM-DD HH:MM.")


def parse_items(s: str) -> list[PrescriptionItemDTO]:
    """'inventory id:dosage:days' entries separated by ';'."""
    items = []
    for n, chunk in enumerate(p for p in s.split(";") if p.strip()):
        parts = [x.strip() for x in chunk.split(":")]
        if len(parts) > 3:
            raise ValueError(f"Item {n + 1}: use 'inventory id:dosage:days'.")
        parts += [""] * (3 - len(parts))
        items.append(PrescriptionItemDTO(
            id=None, inventory_id=parse_int(parts[0]), dosage=parts[1] or None, duration_days=parse_int(parts[2])
        ))
    return items


def format_items(items: list[PrescriptionItemDTO] | None) -> str:
    return "; ".join(
        f"{i.inventory_id}:{i.dosage or ''}:{'' if i.duration_days is None else i.duration_days}"
        for i in items or []
    )


@dataclass(frozen=True)
class Field:
    name: str
    label: str
    parse: Callable[[str], Any] = parse_text
    fmt: Callable[[Any], str] = display
    placeholder: str = ""


@dataclass(frozen=True)
class Screen:
    title: str
    record: type
    sorts: type[Enum]
    columns: List[Column]
    fields: List[Field]
    details: tuple[str, List[Column]] | None = None     # (title, columns) for related rows


def _name_fields():
    return [
        Field("first_name", "First name *"), Field("middle_name", "Middle name"), Field("last_name", "Last name *"),
        Field("email", "Email *"), Field("phone", "Phone *"),
    ]


SCREENS = [
    Screen("Patients", PatientDTO, PatientSort,
           [Column("ID", lambda r: r.id), Column("Name", lambda r: r.full_name), Column("Email", lambda r: r.email),
            Column("Phone", lambda r: r.phone), Column("Birth date", lambda r: r.date_of_birth),
            Column("Registered", lambda r: r.registration_date)],
           _name_fields() + [Field("date_of_birth", "Birth date *", parse_date, placeholder="YYYY-MM-DD"),
                             Field("address", "Address")],
           ("Recent visits", [Column("Date", lambda v: v.visit_date), Column("Doctor", lambda v: v.doctor_name),
                              Column("Reason", lambda v: v.reason)])),
    Screen("Doctors", DoctorDTO, DoctorSort,
           [Column("ID", lambda r: r.id), Column("Name", lambda r: r.full_name), Column("Email", lambda r: r.email),
            Column("Phone", lambda r: r.phone), Column("Department", lambda r: r.department_id)],
           _name_fields() + [Field("department_id", "Department ID", parse_int)],
           ("Appointments", [Column("When", lambda a: a.appointment_date), Column("Patient", lambda a: a.patient_name),
                             Column("Reason", lambda a: a.reason)])),
    Screen("Departments", DepartmentDTO, DepartmentSort,
           [Column("ID", lambda r: r.id), Column("Name", lambda r: r.name), Column("Phone", lambda r: r.phone)],
           [Field("name", "Name *"), Field("phone", "Phone")]),
    Screen("Appointments", AppointmentDTO, AppointmentSort,
           [Column("ID", lambda r: r.id), Column("Patient", lambda r: r.patient_name),
            Column("Doctor", lambda r: r.doctor_name), Column("When", lambda r: r.appointment_date),
            Column("Reason", lambda r: r.reason)],
           [Field("patient_id", "Patient ID *", parse_int), Field("doctor_id", "Doctor ID *", parse_int),
            Field("appointment_date", "Date & time *", parse_datetime, placeholder="YYYY-MM-DD HH:MM"),
            Field("reason", "Reason *")]),
    Screen("Prescriptions", PrescriptionDTO, PrescriptionSort,
           [Column("ID", lambda r: r.id), Column("Patient", lambda r: r.patient_name),
            Column("Doctor", lambda r: r.doctor_name), Column("Date", lambda r: r.prescription_date),
            Column("Items", lambda r: ", ".join(i.medication_name or str(i.inventory_id) for i in r.items or [])),
            Column("Notes", lambda r: r.notes)],
           [Field("patient_id", "Patient ID *", parse_int), Field("doctor_id", "Doctor ID *", parse_int),
            Field("prescription_date", "Date *", parse_date, placeholder="YYYY-MM-DD"),
            Field("items", "Items", parse_items, format_items, "inventory id:dosage:days; ..."),
            Field("notes", "Notes")]),
    Screen("Inventory", MedicalInventoryDTO, MedicalInventorySort,
           [Column("ID", lambda r: r.id), Column("Name", lambda r: r.name), Column("Type", lambda r: r.type),
            Column("Quantity", lambda r: r.quantity), Column("Unit", lambda r: r.unit),
            Column("Expiry", lambda r: r.expiry_date), Column("Cost", lambda r: r.cost)],
           [Field("name", "Name *"), Field("type", "Type"), Field("quantity", "Quantity *", parse_int),
            Field("unit", "Unit"), Field("expiry_date", "Expiry", parse_date, placeholder="YYYY-MM-DD"),
            Field("cost", "Cost", parse_decimal)]),
    Screen("Feedback", PatientFeedbackDTO, PatientFeedbackSort,
           [Column("ID", lambda r: r.id), Column("Patient", lambda r: r.patient_name),
            Column("Doctor", lambda r: r.doctor_name), Column("Rating", lambda r: r.rating),
            Column("Date", lambda r: r.feedback_date), Column("Comments", lambda r: r.comments)],
           [Field("patient_id", "Patient ID *", parse_int), Field("doctor_id", "Doctor ID *", parse_int),
            Field("rating", "Rating (1-5)", parse_int), Field("comments", "Comments")]),
]


# ------------------ one tab per entity ------------------

class EntityTab(QWidget):
    def __init__(self, screen: Screen, controller: EntityController):
        super().__init__()
        self.screen = screen
        self.ctl = controller
        self._shown_form = object()     # forces the first fill
        self._build_ui()
        controller.subscribe(self._render)

    def _build_ui(self):
        root = QVBoxLayout(self); root.setContentsMargins(12, 12, 12, 12); root.setSpacing(8)

        # search + sort
        top = QHBoxLayout()
        lbl = QLabel("Search:"); lbl.setObjectName("muted")
        self.search = QLineEdit(); self.search.setPlaceholderText("ID, or any part of a name …")
        self.search.setClearButtonEnabled(True); self.search.textChanged.connect(self._on_search)
        self.sort = QComboBox(); self.sort.addItems([o.value for o in self.screen.sorts])
        self.sort.currentTextChanged.connect(self.ctl.sort)
        top.addWidget(lbl); top.addWidget(self.search, 1); top.addWidget(QLabel("Sort:")); top.addWidget(self.sort)
        root.addLayout(top)

        # table + pagination
        left = QWidget(); lv = QVBoxLayout(left); lv.setContentsMargins(0, 0, 0, 0); lv.setSpacing(6)
        self.model = EntityTableModel(self.screen.columns)
        self.table = QTableView(); self.table.setModel(self.model)
        self.table.setSelectionBehavior(QAbstractItemView.SelectRows)
        self.table.setSelectionMode(QAbstractItemView.SingleSelection)
        self.table.setAlternatingRowColors(True)
        self.table.verticalHeader().setVisible(False)
        self.table.selectionModel().selectionChanged.connect(self._on_select)
        lv.addWidget(self.table, 1)

        pag = QHBoxLayout()
        self.e_page_size = QLineEdit(str(self.ctl.state.page_size)); self.e_page_size.setFixedWidth(48)
        self.e_page_size.setAlignment(Qt.AlignCenter); self.e_page_size.editingFinished.connect(self._on_page_size)
        self.btn_prev = QPushButton("« Prev"); self.btn_prev.clicked.connect(self.ctl.previous_page)
        self.lbl_page = QLabel("Page 1 / 1")
        self.btn_next = QPushButton("Next »"); self.btn_next.clicked.connect(self.ctl.next_page)
        self.lbl_range = QLabel("")
        for lab in (self.lbl_page, self.lbl_range): lab.setObjectName("muted")
        pag.addWidget(QLabel("Rows/page")); pag.addWidget(self.e_page_size); pag.addSpacing(12)
        pag.addWidget(self.btn_prev); pag.addWidget(self.lbl_page); pag.addWidget(self.btn_next)
        pag.addSpacing(16); pag.addWidget(self.lbl_range); pag.addStretch(1)
        lv.addLayout(pag)

        # form
        form_wrap = QFrame(); form_wrap.setObjectName("card")
        form = QFormLayout(form_wrap)
        self.e_id = QLineEdit(); self.e_id.setReadOnly(True)
        form.addRow("ID", self.e_id)
        self.inputs: dict[str, QLineEdit] = {}
        for f in self.screen.fields:
            w = QLineEdit(); w.setPlaceholderText(f.placeholder)
            self.inputs[f.name] = w
            form.addRow(f.label, w)

        self.detail_model = None
        if self.screen.details:
            title, columns = self.screen.details
            self.detail_model = EntityTableModel(columns)
            detail = QTableView(); detail.setModel(self.detail_model)
            detail.verticalHeader().setVisible(False); detail.setMaximumHeight(180)
            lab = QLabel(title); lab.setObjectName("muted")
            form.addRow(lab)
            form.addRow(detail)

        split = QSplitter(Qt.Horizontal); split.addWidget(left); split.addWidget(form_wrap)
        split.setStretchFactor(0, 5); split.setStretchFactor(1, 3)
        root.addWidget(split, 1)

        # feedback + actions
        bottom = QHBoxLayout()
        self.feedback = QLabel(""); self.feedback.setWordWrap(True)
        bottom.addWidget(self.feedback, 1)
        self.btn_new = QPushButton("New"); self.btn_new.clicked.connect(self._new)
        self.btn_save = QPushButton("Save"); self.btn_save.clicked.connect(self._save)
        self.btn_del = QPushButton("Delete"); self.btn_del.clicked.connect(self.ctl.delete)
        for b in (self.btn_new, self.btn_save, self.btn_del): bottom.addWidget(b)
        root.addLayout(bottom)

    # ----- data flow -----
    def _debounced(self, fn, ms=250):
        if not hasattr(self, "_debounce"):
            self._debounce = QTimer(self); self._debounce.setSingleShot(True)
            self._debounce.timeout.connect(lambda: self._pending())
        self._pending = fn
        self._debounce.start(ms)

    def _on_search(self, text: str):
        self._debounced(lambda: self.ctl.search(text.strip()), 200)

    def _on_page_size(self):
        try: size = int(self.e_page_size.text())
        except ValueError: size = 0
        if size < 1:
            size = self.ctl.state.page_size; self.e_page_size.setText(str(size)); return
        self.ctl.set_page_size(size)

    def _on_select(self, *_):
        idxs = self.table.selectionModel().selectedRows()
        if idxs:
            self.ctl.select(self.model.at(idxs[0].row()))

    def _render(self, st: ViewState):
        self.model.set_rows(st.rows)
        self.lbl_page.setText(f"Page {st.page_index + 1} / {st.page_count}")
        if st.total == 0:
            self.lbl_range.setText("Showing 0 of 0")
        else:
            start = st.page_index * st.page_size
            self.lbl_range.setText(f"Showing {start + 1}–{start + len(st.rows)} of {st.total}")
        self.btn_prev.setEnabled(st.page_index > 0)
        self.btn_next.setEnabled(st.page_index < st.page_count - 1)
        self.btn_del.setEnabled(st.selected is not None)
        if self.detail_model is not None:
            self.detail_model.set_rows(st.details)

        self.feedback.setText(st.message)
        self.feedback.setStyleSheet(f"color:{PALETTE['error'] if st.is_error else PALETTE['ok']};")

        if st.form is not self._shown_form:
            self._fill_form(st.form)

    def _fill_form(self, record):
        self._shown_form = record
        self.e_id.setText(str(record.id) if record is not None and record.id is not None else "")
        for f in self.screen.fields:
            self.inputs[f.name].setText(f.fmt(getattr(record, f.name)) if record is not None else "")

    # ----- CRUD -----
    def _new(self):
        self.table.clearSelection()
        self.ctl.new()
        if self.screen.fields:
            self.inputs[self.screen.fields[0].name].setFocus()

    def _collect(self):
        values = {}
        for f in self.screen.fields:
            try:
                values[f.name] = f.parse(self.inputs[f.name].text())
            except ValueError as e:
                self.feedback.setText(f"{f.label.rstrip(' *')}: {e}")
                self.feedback.setStyleSheet(f"color:{PALETTE['error']};")
                return None
        current = self.ctl.state.selected
        return self.screen.record(id=current.id if current is not None else None, **values)

    def _save(self):
        record = self._collect()
        if record is not None:
            self.ctl.save(record)


# ------------------ main window ------------------

class MainWindow(QMainWindow):
    def __init__(self, controllers: dict[str, EntityController]):
        super().__init__()
        self.setWindowTitle("Hospital Desk (PySide6 + SQLAlchemy)")
        self.setMinimumSize(1240, 760)
        self.setStatusBar(QStatusBar(self))
        self.tabs = QTabWidget()
        self.controllers = controllers
        for screen in SCREENS:
            self.tabs.addTab(EntityTab(screen, controllers[screen.title]), screen.title)
        self.setCentralWidget(self.tabs)
        self.tabs.currentChanged.connect(self._on_tab)
        self.setStyleSheet(f"""
        QFrame#card {{ border:1px solid #e5e5e5; border-radius:10px; background:#fafafa; }}
        QTabBar::tab:selected {{ color:{PALETTE['blue']}; font-weight:600; }}
        QLabel#muted {{ color:#666; }}
        """)

    def _on_tab(self, index: int):
        # other tabs may have written rows this one displays
        self.controllers[self.tabs.tabText(index)].load()


# ---- entrypoint ----
def run():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = load_settings()
    engine = make_engine(settings)
    if engine.dialect.name == "sqlite":
        init_db(engine, Base)
    services = build_services(make_session_factory(engine))
    controllers = build_controllers(services, page_size=settings.page_size)

    app = QApplication(sys.argv)
    w = MainWindow(controllers)
    if ping(engine):
        w.controllers[SCREENS[0].title].load()
        w.statusBar().showMessage("Connected.", 1500)
    else:
        w.statusBar().showMessage("Database unreachable; check DB_URL / DB_USER / DB_PASSWORD.")
    w.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    run()
