from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, TypeVar

from domain import id_term
from errors import HmsError, ValidationError
from pagination import plan_page
from services import SearchService, Services
from validation import Validator

logger = logging.getLogger(__name__)

D = TypeVar("D")

DEFAULT_PAGE_SIZE = 25


@dataclass
class ViewState(Generic[D]):
    rows: list[D] = field(default_factory=list)
    total: int = 0
    page_count: int = 1
    page_index: int = 0
    page_size: int = DEFAULT_PAGE_SIZE
    search_term: str = ""
    sort_key: str | None = None
    message: str = ""
    is_error: bool = False
    selected: D | None = None
    form: D | None = None        # what the form should show; None = empty form
    details: list = field(default_factory=list)   # related rows for the selection


class EntityController(Generic[D]):
    """
    Drives one entity screen: load -> count -> clamp page -> search -> publish.

    Every action ends by publishing ``state`` to subscribers, success or
    failure, so the view always re-renders its status message.
    """

    def __init__(self, service: SearchService[D], validator: Validator[D], plural: str,
                 page_size: int = DEFAULT_PAGE_SIZE,
                 details: Callable[[int], list] | None = None):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.service = service
        self.validator = validator
        self.entity = service.entity
        self.plural = plural
        self.details = details
        self.state: ViewState[D] = ViewState(page_size=page_size)
        self._listeners: list[Callable[[ViewState[D]], None]] = []

    # ----- observers -----
    def subscribe(self, fn: Callable[[ViewState[D]], None]):
        self._listeners.append(fn)
        return fn

    def _publish(self):
        for fn in list(self._listeners):
            fn(self.state)

    def _ok(self, message: str):
        self.state.message, self.state.is_error = message, False

    def _fail(self, message: str, exc: HmsError | None = None):
        if exc is not None:
            logger.warning("%s screen: %s [%s]", self.entity, message, exc.kind)
        self.state.message, self.state.is_error = message, True

    # ----- loading -----
    def _fetch(self, requested_page: int):
        st = self.state
        total = self.service.count(st.search_term, st.sort_key)
        plan = plan_page(total, st.page_size, requested_page)
        st.rows = self.service.search(st.search_term, st.page_size, plan.offset, st.sort_key)
        st.total, st.page_count, st.page_index = total, plan.page_count, plan.page_index

    def _summary(self) -> str:
        id_search = " (ID search)" if id_term(self.state.search_term) is not None else ""
        return f"{self.state.total} {self.plural} found{id_search} | Cache: {self.service.get_cache_stats()}"

    def load(self, search_term: str | None = None, sort_key: str | None = None,
             page_index: int | None = None) -> None:
        st = self.state
        if search_term is not None:
            st.search_term = search_term
        if sort_key is not None:
            st.sort_key = sort_key
        try:
            self._fetch(st.page_index if page_index is None else page_index)
            self._ok(self._summary())
        except HmsError as e:
            self._fail(f"Failed to load {self.plural}: {e}", e)
        self._publish()

    def search(self, search_term: str):
        self.load(search_term=search_term, page_index=0)

    def sort(self, sort_key: str):
        self.load(sort_key=sort_key, page_index=0)

    def next_page(self):
        self.load(page_index=self.state.page_index + 1)

    def previous_page(self):
        self.load(page_index=self.state.page_index - 1)

    def set_page_size(self, size: int):
        if size < 1:
            raise ValueError("page size must be positive")
        self.state.page_size = size
        self.load()

    # ----- selection / form -----
    def select(self, record: D | None):
        st = self.state
        st.selected = record
        st.form = record
        st.details = []
        if self.details is not None and record is not None and record.id is not None:
            try:
                st.details = self.details(record.id)
            except HmsError as e:
                self._fail(f"Failed to load details: {e}", e)
        self._publish()

    def new(self):
        self.state.selected = None
        self.state.form = None
        self.state.details = []
        self._publish()

    # ----- writes -----
    def save(self, record: D) -> int | None:
        st = self.state
        st.form = record
        result = self.validator.validate(record)
        if not result.ok:
            self._fail(result.message)
            self._publish()
            return None

        is_new = getattr(record, "id", None) is None
        try:
            ident = self.service.save(record)
        except ValidationError as e:
            self._fail(str(e), e)
            self._publish()
            return None
        except HmsError as e:
            self._fail(f"Failed to save {self.entity.lower()}: {e}", e)
            self._publish()
            return None

        st.form = None
        st.selected = None
        st.details = []
        done = f"{self.entity} {'created' if is_new else 'updated'}"
        self._reload_after(done)
        return ident

    def delete(self) -> bool:
        st = self.state
        if st.selected is None:
            self._fail(f"Select a {self.entity.lower()} to delete")
            self._publish()
            return False
        try:
            self.service.delete(st.selected.id)
        except HmsError as e:
            self._fail(f"Failed to delete {self.entity.lower()}: {e}", e)
            self._publish()
            return False

        st.selected = None
        st.form = None
        st.details = []
        self._reload_after(f"{self.entity} deleted")
        return True

    def _reload_after(self, done: str):
        try:
            self._fetch(self.state.page_index)
            self._ok(done)
        except HmsError as e:
            self._fail(f"{done}, but the list could not be refreshed: {e}", e)
        self._publish()


def build_controllers(services: Services, page_size: int = DEFAULT_PAGE_SIZE) -> dict[str, EntityController]:
    """One controller per screen, keyed by tab title."""
    screens = [
        ("Patients", services.patients, "patients", services.patients.visit_history),
        ("Doctors", services.doctors, "doctors", services.appointments.find_by_doctor),
        ("Departments", services.departments, "departments", None),
        ("Appointments", services.appointments, "appointments", None),
        ("Prescriptions", services.prescriptions, "prescriptions", None),
        ("Inventory", services.inventory, "inventory items", None),
        ("Feedback", services.feedback, "feedback entries", None),
    ]
    return {
        title: EntityController(svc, svc.validator, plural, page_size=page_size, details=details)
        for title, svc, plural, details in screens
    }
