#!/usr/bin/env python3
"""
Implications Explorer - visual editor for implication state machines.
A desktop app to scan a test project, explore its states and transitions,
and edit them through the companion backend.
Uses PySide6 (Qt for Python) under the LGPL v3 license.

PySide6 License: LGPL v3 (https://www.gnu.org/licenses/lgpl-3.0.html)
Qt for Python: https://www.qt.io/qt-for-python
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

try:
    from PySide6.QtWidgets import (
        QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
        QPushButton, QLabel, QTextEdit, QDialog, QDialogButtonBox,
        QFileDialog, QMessageBox, QScrollArea, QFrame, QStatusBar,
        QMenu, QLineEdit, QGridLayout, QListWidget, QListWidgetItem,
        QComboBox, QToolButton, QTableWidget, QTableWidgetItem, QHeaderView,
        QGroupBox, QFormLayout
    )
    from PySide6.QtCore import Qt, Signal
    from PySide6.QtGui import QAction, QKeySequence, QShortcut, QCursor
except ImportError:
    print("Error: PySide6 is required. Install with: pip install PySide6")
    sys.exit(1)

from . import __version__, config
from .api_client import ApiClient, ApiError, NOTE_DEFAULT_CATEGORY
from .detail_flow import EditSession, SaveError, StateDetail, resolve_state_detail
from .discovery import DiscoveryResult
from .graph_analysis import search_graph
from .interactive_diagram import InteractiveStateDiagram
from .issues import IssueReport, analyze_issues
from .layout_store import LayoutStore, LocalCache, SessionCache
from .state_graph import GraphModel, build_graph_from_discovery
from .suggestions import PatternAnalysis, analyze_patterns, generate_suggestions
from .validation import ValidationError, validate_state_form, validate_transition_form

logger = logging.getLogger(__name__)

APP_TITLE = f"Implications Explorer v{__version__}"
NOTE_CATEGORIES = ['note', 'bug', 'feature', 'question', 'todo']

SEVERITY_ICONS = {
    'error': '❌',
    'warning': '⚠️',
    'info': 'ℹ️',
}

TOOLBAR_BUTTON_STYLE = (
    "QPushButton { background-color: #e9ecef; }"
    "QPushButton:hover { background-color: #dee2e6; }"
    "QPushButton:checked { background-color: #10b981; color: white; }"
)


def _split_list(text: str) -> List[str]:
    return [part.strip() for part in text.split(',') if part.strip()]


def _format_value(value) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _parse_value(text: str):
    """Context values are typed as JSON when they parse, else kept as strings."""
    try:
        return json.loads(text)
    except ValueError:
        return text


class NotesPanel(QGroupBox):
    """Notes attached to one state: list plus an add form."""

    def __init__(self, api: ApiClient, project_path: str, state_id: str, parent=None):
        super().__init__("Notes", parent)
        self.api = api
        self.project_path = project_path
        self.state_id = state_id
        self._setup_ui()
        self.reload()

    def _setup_ui(self):
        layout = QVBoxLayout(self)
        self.notes_list = QListWidget()
        self.notes_list.setMaximumHeight(120)
        layout.addWidget(self.notes_list)

        form = QHBoxLayout()
        self.title_edit = QLineEdit()
        self.title_edit.setPlaceholderText("Title (optional)")
        form.addWidget(self.title_edit)
        self.category_combo = QComboBox()
        self.category_combo.addItems(NOTE_CATEGORIES)
        self.category_combo.setCurrentText(NOTE_DEFAULT_CATEGORY)
        form.addWidget(self.category_combo)
        self.ticket_edit = QLineEdit()
        self.ticket_edit.setPlaceholderText("Ticket")
        self.ticket_edit.setFixedWidth(90)
        form.addWidget(self.ticket_edit)
        layout.addLayout(form)

        self.content_edit = QTextEdit()
        self.content_edit.setPlaceholderText("Write a note...")
        self.content_edit.setFixedHeight(60)
        layout.addWidget(self.content_edit)

        add_btn = QPushButton("Add Note")
        add_btn.clicked.connect(self._add_note)
        layout.addWidget(add_btn, alignment=Qt.AlignRight)

    def reload(self):
        self.notes_list.clear()
        if not self.project_path:
            return
        try:
            notes = self.api.get_notes(self.project_path).for_state(self.state_id)
        except ApiError as e:
            logger.warning("Could not load notes for %s: %s", self.state_id, e)
            self.notes_list.addItem(f"(notes unavailable: {e})")
            return
        for note in notes:
            heading = note.title or note.content.splitlines()[0]
            ticket = f" [{note.ticket}]" if note.ticket else ""
            self.notes_list.addItem(f"{note.category} · {note.status}{ticket}: {heading}")

    def _add_note(self):
        content = self.content_edit.toPlainText().strip()
        if not content:
            QMessageBox.warning(self, "Note Required", "Note content is required.")
            self.content_edit.setFocus()
            return
        try:
            self.api.add_note(
                self.project_path, 'state', self.state_id, content,
                title=self.title_edit.text(),
                category=self.category_combo.currentText(),
                ticket=self.ticket_edit.text(),
            )
        except ApiError as e:
            QMessageBox.critical(self, "Error", f"Failed to add note:\n{e}")
            return
        self.title_edit.clear()
        self.ticket_edit.clear()
        self.content_edit.clear()
        self.reload()


class StateDetailDialog(QDialog):
    """View and edit one state: metadata, context, transitions, notes and test locks."""

    def __init__(self, parent, detail: StateDetail, api: ApiClient, project_path: str,
                 analysis: Optional[PatternAnalysis] = None, on_rescan=None):
        super().__init__(parent)
        self.detail = detail
        self.api = api
        self.project_path = project_path
        self.analysis = analysis
        self.session = EditSession(detail, api, confirm_discard=self._confirm_discard,
                                   on_rescan=on_rescan)
        self._loading = False

        self.setWindowTitle(f"State: {detail.title}")
        self.resize(720, 760)
        self.setModal(True)

        self._setup_ui()
        self._load_from_session()
        self._update_mode()

    # -- UI --------------------------------------------------------------------

    def _setup_ui(self):
        outer = QVBoxLayout(self)

        header = QHBoxLayout()
        title = QLabel(f"{self.detail.title}")
        title.setStyleSheet("font-weight: bold; font-size: 12pt;")
        header.addWidget(title)
        header.addStretch()
        self.edit_btn = QPushButton("Edit")
        self.edit_btn.clicked.connect(self._toggle_edit)
        header.addWidget(self.edit_btn)
        self.save_btn = QPushButton("Save")
        self.save_btn.clicked.connect(self._save)
        header.addWidget(self.save_btn)
        outer.addLayout(header)

        files = QLabel(f"{self.detail.implication_file}\n{self.detail.test_file or 'no test file'}")
        files.setStyleSheet("color: #6c757d; font-size: 8pt;")
        files.setTextInteractionFlags(Qt.TextSelectableByMouse)
        outer.addWidget(files)

        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        body = QWidget()
        self.body_layout = QVBoxLayout(body)
        scroll.setWidget(body)
        outer.addWidget(scroll)

        self._add_metadata_section()
        self._add_suggestions_section()
        self._add_context_section()
        self._add_transitions_section()
        self._add_coverage_section()
        self._add_locks_section()
        if self.project_path:
            self.body_layout.addWidget(NotesPanel(self.api, self.project_path, self.detail.id))
        self.body_layout.addStretch()

        buttons = QDialogButtonBox(QDialogButtonBox.Close)
        buttons.rejected.connect(self.reject)
        outer.addWidget(buttons)

    def _add_metadata_section(self):
        group = QGroupBox("Metadata")
        form = QFormLayout(group)
        self.status_edit = QLineEdit()
        self.trigger_edit = QLineEdit()
        self.platform_edit = QLineEdit()
        self.fields_edit = QLineEdit()
        self.fields_edit.setPlaceholderText("comma separated")
        self.screen_edit = QLineEdit()
        form.addRow("Status", self.status_edit)
        form.addRow("Trigger button", self.trigger_edit)
        form.addRow("Platform", self.platform_edit)
        form.addRow("Required fields", self.fields_edit)
        form.addRow("Screen", self.screen_edit)

        self.status_edit.textEdited.connect(lambda text: self._set_meta('status', text))
        self.trigger_edit.textEdited.connect(lambda text: self._set_meta('triggerButton', text))
        self.platform_edit.textEdited.connect(lambda text: self._set_meta('platform', text))
        self.fields_edit.textEdited.connect(lambda text: self._set_meta('requiredFields', _split_list(text)))
        self.screen_edit.textEdited.connect(lambda text: self._set_meta('screen', text))
        self._meta_widgets = [self.status_edit, self.trigger_edit, self.platform_edit,
                              self.fields_edit, self.screen_edit]
        self.body_layout.addWidget(group)

    def _add_suggestions_section(self):
        self.suggestions_group = QGroupBox("Suggestions")
        self.suggestions_layout = QVBoxLayout(self.suggestions_group)
        self.body_layout.addWidget(self.suggestions_group)
        self.suggestions_group.hide()

    def _add_context_section(self):
        group = QGroupBox("Context")
        layout = QVBoxLayout(group)
        self.context_table = QTableWidget(0, 2)
        self.context_table.setHorizontalHeaderLabels(["Field", "Value"])
        self.context_table.horizontalHeader().setSectionResizeMode(QHeaderView.Stretch)
        self.context_table.verticalHeader().setVisible(False)
        self.context_table.itemChanged.connect(self._on_context_item_changed)
        layout.addWidget(self.context_table)
        self.body_layout.addWidget(group)

    def _add_transitions_section(self):
        group = QGroupBox("Transitions")
        grid = QGridLayout(group)
        grid.addWidget(QLabel("Outgoing"), 0, 0)
        grid.addWidget(QLabel("Incoming"), 0, 1)
        self.outgoing_list = QListWidget()
        self.incoming_list = QListWidget()
        grid.addWidget(self.outgoing_list, 1, 0)
        grid.addWidget(self.incoming_list, 1, 1)
        self.remove_transition_btn = QPushButton("Remove Selected")
        self.remove_transition_btn.clicked.connect(self._remove_transition)
        grid.addWidget(self.remove_transition_btn, 2, 0)
        for ref in self.detail.incoming:
            self.incoming_list.addItem(f"{ref.source} --{ref.event}-->")
        self.body_layout.addWidget(group)

    def _add_coverage_section(self):
        coverage = self.detail.ui_coverage
        setup = ', '.join(entry.action_name or '?' for entry in self.detail.setup) or 'none'
        text = (f"UI coverage: {coverage.get('total', 0)} screens\n"
                f"Platforms: {', '.join(self.detail.platforms)}\n"
                f"Setup: {setup}")
        label = QLabel(text)
        label.setStyleSheet("color: #495057;")
        self.body_layout.addWidget(label)

    def _add_locks_section(self):
        self.locks_group = QGroupBox("Test Locks")
        self.locks_layout = QVBoxLayout(self.locks_group)
        self.body_layout.addWidget(self.locks_group)
        self._reload_locks()

    def _reload_locks(self):
        while self.locks_layout.count():
            item = self.locks_layout.takeAt(0)
            if item.widget():
                item.widget().deleteLater()
        if not self.project_path:
            self.locks_group.hide()
            return
        setup_entries = [entry.raw for entry in self.detail.setup if isinstance(entry.raw, dict)]
        try:
            locks = self.api.get_state_locks(self.project_path, self.detail.id, setup_entries)
        except ApiError as e:
            logger.warning("Could not load locks for %s: %s", self.detail.id, e)
            self.locks_layout.addWidget(QLabel(f"Locks unavailable: {e}"))
            return
        if not locks:
            self.locks_layout.addWidget(QLabel("No tests for this state."))
        for lock in locks:
            row = QHBoxLayout()
            row.addWidget(QLabel(f"{'🔒' if lock.locked else '🔓'} {Path(lock.test_file).name}"))
            row.addStretch()
            btn = QPushButton("Unlock" if lock.locked else "Lock")
            btn.clicked.connect(lambda checked=False, path=lock.test_file: self._toggle_lock(path))
            row.addWidget(btn)
            holder = QWidget()
            holder.setLayout(row)
            self.locks_layout.addWidget(holder)

    def _toggle_lock(self, test_file: str):
        try:
            self.api.toggle_lock(self.project_path, test_file)
        except ApiError as e:
            QMessageBox.critical(self, "Error", f"Failed to toggle lock:\n{e}")
            return
        self._reload_locks()

    # -- session sync ----------------------------------------------------------

    def _current(self) -> Dict:
        return self.session.scratch if self.session.is_editing else self.session.original

    def _load_from_session(self):
        self._loading = True
        data = self._current()
        meta = data['meta']
        self.status_edit.setText(meta.get('status') or '')
        self.trigger_edit.setText(meta.get('triggerButton') or '')
        self.platform_edit.setText(meta.get('platform') or '')
        self.fields_edit.setText(', '.join(meta.get('requiredFields') or []))
        self.screen_edit.setText(meta.get('screen') or '')

        context = data['context']
        self.context_table.setRowCount(len(context))
        for row, (key, value) in enumerate(context.items()):
            key_item = QTableWidgetItem(key)
            key_item.setFlags(key_item.flags() & ~Qt.ItemIsEditable)
            self.context_table.setItem(row, 0, key_item)
            self.context_table.setItem(row, 1, QTableWidgetItem(_format_value(value)))

        self.outgoing_list.clear()
        for entry in data['transitions']:
            self.outgoing_list.addItem(f"--{entry['event']}--> {entry['target']}")
        self._loading = False
        self._refresh_suggestions()

    def _update_mode(self):
        editing = self.session.is_editing
        for widget in self._meta_widgets:
            widget.setReadOnly(not editing)
        self.context_table.setEditTriggers(
            QTableWidget.DoubleClicked | QTableWidget.EditKeyPressed if editing
            else QTableWidget.NoEditTriggers)
        self.remove_transition_btn.setEnabled(editing)
        self.edit_btn.setText("Cancel" if editing else "Edit")
        self.save_btn.setEnabled(self.session.can_save)
        self.suggestions_group.setVisible(editing and self.suggestions_layout.count() > 0)

    def _set_meta(self, key: str, value):
        if self._loading or not self.session.is_editing:
            return
        self.session.set_meta(key, value)
        self.save_btn.setEnabled(self.session.can_save)

    def _on_context_item_changed(self, item: QTableWidgetItem):
        if self._loading or not self.session.is_editing or item.column() != 1:
            return
        key = self.context_table.item(item.row(), 0).text()
        self.session.set_context(key, _parse_value(item.text()))
        self.save_btn.setEnabled(self.session.can_save)

    def _remove_transition(self):
        row = self.outgoing_list.currentRow()
        if row < 0 or not self.session.is_editing:
            return
        self.session.remove_transition(row)
        self._load_from_session()
        self.save_btn.setEnabled(self.session.can_save)

    # -- suggestions -----------------------------------------------------------

    def _refresh_suggestions(self):
        while self.suggestions_layout.count():
            item = self.suggestions_layout.takeAt(0)
            if item.widget():
                item.widget().deleteLater()
        if self.analysis is None or not self.session.is_editing:
            return

        meta = self.session.scratch['meta']
        suggestions = generate_suggestions(self.analysis, {
            'stateName': self.detail.id,
            'requiredFields': meta.get('requiredFields') or [],
            'setupActions': [s for s in meta.get('setup') or [] if isinstance(s, str)],
        })
        rows = [('triggerButton', s) for s in suggestions.trigger_button]
        rows += [('requiredField', s) for s in suggestions.required_fields]
        rows += [('setupAction', s) for s in suggestions.setup_actions]
        for kind, suggestion in rows:
            if kind == 'triggerButton' or suggestion.applicable:
                btn = QPushButton(f"+ {suggestion.value}  ({suggestion.reason})")
                btn.clicked.connect(lambda checked=False, k=kind, v=suggestion.value: self._apply_suggestion(k, v))
                self.suggestions_layout.addWidget(btn)
            else:
                info = QLabel(f"{suggestion.value}: {suggestion.reason}")
                info.setStyleSheet("color: #6c757d;")
                self.suggestions_layout.addWidget(info)

    def _apply_suggestion(self, kind: str, value):
        self.session.apply_suggestion(kind, value)
        self._load_from_session()
        self._update_mode()

    # -- actions ---------------------------------------------------------------

    def _confirm_discard(self) -> bool:
        answer = QMessageBox.question(self, "Unsaved Changes",
                                      "You have unsaved changes. Discard them?")
        return answer == QMessageBox.Yes

    def _toggle_edit(self):
        if self.session.is_editing:
            if not self.session.cancel():
                return
        else:
            self.session.begin_edit()
        self._load_from_session()
        self._update_mode()

    def _save(self):
        if not self.session.can_save:
            return
        self.save_btn.setEnabled(False)
        QApplication.setOverrideCursor(QCursor(Qt.WaitCursor))
        try:
            self.session.save()
        except SaveError as e:
            QApplication.restoreOverrideCursor()
            QMessageBox.critical(self, "Save Failed", str(e))
            self._update_mode()
            return
        QApplication.restoreOverrideCursor()
        self._load_from_session()
        self._update_mode()

    def reject(self):
        """Close, asking first when there are unsaved edits."""
        if self.session.is_editing and not self.session.cancel():
            return
        super().reject()


class AddTransitionDialog(QDialog):
    """Author a transition between two states picked on the diagram."""

    def __init__(self, parent, api: ApiClient, source: Dict, target: Dict,
                 existing_events: Optional[List[str]] = None):
        super().__init__(parent)
        self.api = api
        self.source = source
        self.target = target
        self.existing_events = existing_events or []
        self.result_event: Optional[str] = None

        self.setWindowTitle("Add Transition")
        self.setFixedSize(420, 240)
        self.setModal(True)
        self._setup_ui()

    def _setup_ui(self):
        layout = QVBoxLayout(self)
        header = QLabel(f"{self.source['id']}  →  {self.target['id']}")
        header.setStyleSheet("font-weight: bold; font-size: 10pt;")
        layout.addWidget(header)

        line = QFrame()
        line.setFrameShape(QFrame.HLine)
        line.setFrameShadow(QFrame.Sunken)
        layout.addWidget(line)

        form = QFormLayout()
        self.event_edit = QLineEdit()
        self.event_edit.setPlaceholderText("e.g. APPROVE_BOOKING")
        self.event_edit.textEdited.connect(self._on_event_edited)
        form.addRow("Event", self.event_edit)
        self.event_error = QLabel()
        self.event_error.setStyleSheet("color: #ef4444; font-size: 8pt;")
        form.addRow("", self.event_error)
        self.platforms_edit = QLineEdit()
        self.platforms_edit.setPlaceholderText("optional, comma separated")
        form.addRow("Platforms", self.platforms_edit)
        layout.addLayout(form)

        button_box = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        button_box.accepted.connect(self._on_confirm)
        button_box.rejected.connect(self.reject)
        layout.addWidget(button_box)

    def _on_event_edited(self, text: str):
        cursor = self.event_edit.cursorPosition()
        self.event_edit.setText(text.upper())
        self.event_edit.setCursorPosition(cursor)
        self.event_error.clear()

    def _on_confirm(self):
        try:
            form = validate_transition_form({
                'event': self.event_edit.text(),
                'target': self.target['id'],
                'platforms': _split_list(self.platforms_edit.text()),
            }, self.existing_events)
        except ValidationError as e:
            self.event_error.setText(e.errors.get('event') or str(e))
            self.event_edit.setFocus()
            return

        try:
            self.api.add_transition(
                self.source['file'], self.target['file'], form['event'],
                platform=(form['platforms'] or [None])[0],
            )
        except ApiError as e:
            QMessageBox.critical(self, "Error", f"Failed to add transition:\n{e}")
            return
        self.result_event = form['event']
        self.accept()


class CreateStateDialog(QDialog):
    """Generate a new implication file from the backend template."""

    def __init__(self, parent, api: ApiClient, project_path: str, existing_states: List[str],
                 analysis: Optional[PatternAnalysis] = None):
        super().__init__(parent)
        self.api = api
        self.project_path = project_path
        self.existing_states = existing_states
        self.analysis = analysis
        self.created_file: Optional[str] = None

        self.setWindowTitle("Create State")
        self.setMinimumWidth(420)
        self.setModal(True)
        self._setup_ui()

    def _setup_ui(self):
        layout = QVBoxLayout(self)
        form = QFormLayout()
        self.name_edit = QLineEdit()
        self.name_edit.setPlaceholderText("e.g. pending_review")
        self.name_edit.textEdited.connect(self._refresh_buttons)
        form.addRow("State name", self.name_edit)
        self.name_error = QLabel()
        self.name_error.setStyleSheet("color: #ef4444; font-size: 8pt;")
        form.addRow("", self.name_error)

        self.platform_combo = QComboBox()
        self.platform_combo.setEditable(True)
        platforms = [p.value for p in self.analysis.platforms] if self.analysis else []
        self.platform_combo.addItems([p for p in platforms if p != 'unknown'] or ['web'])
        form.addRow("Platform", self.platform_combo)

        self.trigger_combo = QComboBox()
        self.trigger_combo.setEditable(True)
        form.addRow("Trigger button", self.trigger_combo)

        self.fields_edit = QLineEdit()
        self.fields_edit.setPlaceholderText("comma separated")
        form.addRow("Required fields", self.fields_edit)

        self.copy_combo = QComboBox()
        self.copy_combo.addItem("(template)", None)
        for state in self.existing_states:
            self.copy_combo.addItem(state, state)
        form.addRow("Copy from", self.copy_combo)
        layout.addLayout(form)

        button_box = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        button_box.accepted.connect(self._on_confirm)
        button_box.rejected.connect(self.reject)
        layout.addWidget(button_box)

    def _refresh_buttons(self, name: str):
        """Offer trigger button names that follow the project's convention."""
        self.name_error.clear()
        if self.analysis is None:
            return
        current = self.trigger_combo.currentText()
        self.trigger_combo.clear()
        suggestions = generate_suggestions(self.analysis, {'stateName': name.strip()})
        self.trigger_combo.addItems([s.value for s in suggestions.trigger_button])
        self.trigger_combo.setEditText(current)

    def _on_confirm(self):
        try:
            form = validate_state_form({
                'stateName': self.name_edit.text(),
                'platform': self.platform_combo.currentText().strip() or None,
                'triggerButton': self.trigger_combo.currentText().strip() or None,
                'requiredFields': _split_list(self.fields_edit.text()),
                'copyFrom': self.copy_combo.currentData(),
            }, self.existing_states)
        except ValidationError as e:
            self.name_error.setText(e.errors.get('stateName') or str(e))
            self.name_edit.setFocus()
            return

        try:
            result = self.api.create_state(self.project_path, form)
        except ApiError as e:
            QMessageBox.critical(self, "Error", f"Failed to create state:\n{e}")
            return
        self.created_file = result.get('fileName') or form['stateName']
        self.accept()


class SearchOverlay(QDialog):
    """Ctrl+K quick search over states and transition events."""

    nodePicked = Signal(str)

    def __init__(self, parent, model: GraphModel):
        super().__init__(parent)
        self.model = model
        self.setWindowTitle("Search")
        self.setWindowFlags(self.windowFlags() | Qt.FramelessWindowHint)
        self.resize(460, 320)

        layout = QVBoxLayout(self)
        self.query_edit = QLineEdit()
        self.query_edit.setPlaceholderText("Search states, statuses, events...")
        self.query_edit.textChanged.connect(self._update_results)
        self.query_edit.returnPressed.connect(self._pick_current)
        layout.addWidget(self.query_edit)
        self.results = QListWidget()
        self.results.itemActivated.connect(self._pick_item)
        layout.addWidget(self.results)

    def _update_results(self, text: str):
        self.results.clear()
        for hit in search_graph(self.model, text):
            item = QListWidgetItem(hit.text)
            item.setData(Qt.UserRole, hit.node_id)
            self.results.addItem(item)
        if self.results.count():
            self.results.setCurrentRow(0)

    def _pick_current(self):
        item = self.results.currentItem()
        if item is not None:
            self._pick_item(item)

    def _pick_item(self, item: QListWidgetItem):
        self.nodePicked.emit(item.data(Qt.UserRole))
        self.accept()


class IssuesDialog(QDialog):
    """List of structural problems found in the last scan."""

    nodePicked = Signal(str)

    def __init__(self, parent, report: IssueReport):
        super().__init__(parent)
        self.setWindowTitle(f"Issues ({report.summary()})")
        self.resize(620, 420)
        layout = QVBoxLayout(self)
        self.issue_list = QListWidget()
        for issue in report.issues:
            item = QListWidgetItem(f"{SEVERITY_ICONS.get(issue.severity, '')} {issue.state}: {issue.message}")
            item.setData(Qt.UserRole, issue.state)
            tooltip = issue.location
            if issue.suggestions:
                tooltip += "\nFixes: " + ", ".join(issue.suggestion_titles)
            item.setToolTip(tooltip.strip())
            self.issue_list.addItem(item)
        self.issue_list.itemDoubleClicked.connect(self._pick)
        layout.addWidget(self.issue_list)
        buttons = QDialogButtonBox(QDialogButtonBox.Close)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

    def _pick(self, item):
        self.nodePicked.emit(item.data(Qt.UserRole))
        self.accept()


class ImplicationsExplorer(QMainWindow):
    """Main application class."""

    def __init__(self, api: Optional[ApiClient] = None, cache: Optional[LocalCache] = None,
                 resume: bool = True):
        super().__init__()
        self.setWindowTitle(APP_TITLE)
        self.setGeometry(100, 100, 1200, 800)

        self.api = api or ApiClient()
        self.cache = cache or LocalCache(config.get_cache_path())
        self.layout_store = LayoutStore(self.cache, self.api)
        self.session = SessionCache(self.cache)

        self.project_path: str = ''
        self.discovery: Optional[DiscoveryResult] = None
        self.model = GraphModel()
        self.analysis: Optional[PatternAnalysis] = None
        self.issues: Optional[IssueReport] = None
        self.offline = False
        self._tag_actions: Dict[str, QAction] = {}

        self._setup_ui()
        self._setup_shortcuts()
        if resume:
            self._resume_session()

    # -- UI --------------------------------------------------------------------

    def _setup_ui(self):
        """Set up the user interface."""
        self.central_widget = QWidget()
        self.setCentralWidget(self.central_widget)
        self.main_layout = QVBoxLayout(self.central_widget)

        # Top toolbar: project and scan
        toolbar_layout = QHBoxLayout()
        self.repo_label = QLabel("Implications")
        self.repo_label.setStyleSheet("font-weight: bold; font-size: 14px;")
        toolbar_layout.addWidget(self.repo_label)

        self.project_edit = QLineEdit()
        self.project_edit.setPlaceholderText("/path/to/project")
        self.project_edit.returnPressed.connect(self._scan_clicked)
        toolbar_layout.addWidget(self.project_edit, stretch=1)

        browse_btn = QPushButton("...")
        browse_btn.setFixedWidth(30)
        browse_btn.setToolTip("Choose project folder")
        browse_btn.clicked.connect(self._browse_project)
        toolbar_layout.addWidget(browse_btn)

        self.scan_btn = QPushButton("Scan")
        self.scan_btn.setToolTip("Scan the project for implications")
        self.scan_btn.clicked.connect(self._scan_clicked)
        toolbar_layout.addWidget(self.scan_btn)

        self.issues_btn = QPushButton("Issues")
        self.issues_btn.setToolTip("Show structural issues")
        self.issues_btn.setStyleSheet(TOOLBAR_BUTTON_STYLE)
        self.issues_btn.clicked.connect(self._show_issues)
        toolbar_layout.addWidget(self.issues_btn)

        clear_btn = QPushButton("Clear Cache")
        clear_btn.setToolTip("Forget the last scan")
        clear_btn.clicked.connect(self._clear_cache)
        toolbar_layout.addWidget(clear_btn)
        self.main_layout.addLayout(toolbar_layout)

        # Graph toolbar: view controls, filters, authoring
        graph_bar = QHBoxLayout()
        self.diagram = InteractiveStateDiagram(layout_store=self.layout_store)
        self.diagram.nodeClicked.connect(self.show_state_detail)
        self.diagram.transitionRequested.connect(self._on_transition_requested)
        self.diagram.picker.stateChanged.connect(self._on_picker_state)
        controller = self.diagram.controller

        for text, tip, slot in (
            ("Fit", "Fit graph to window", controller.fit),
            ("1:1", "Reset zoom", controller.reset_zoom),
            ("Relayout", "Run the automatic layout", controller.relayout),
            ("Save Layout", "Save node positions", self._save_layout),
            ("Reset Layout", "Forget saved positions", self._reset_layout),
        ):
            btn = QPushButton(text)
            btn.setToolTip(tip)
            btn.setStyleSheet(TOOLBAR_BUTTON_STYLE)
            btn.clicked.connect(slot)
            graph_bar.addWidget(btn)

        self.tag_filter_btn = QToolButton()
        self.tag_filter_btn.setText("Tags ▾")
        self.tag_filter_btn.setToolTip("Show only states carrying any checked tag")
        self.tag_filter_btn.setPopupMode(QToolButton.InstantPopup)
        self.tag_menu = QMenu(self)
        self.tag_filter_btn.setMenu(self.tag_menu)
        graph_bar.addWidget(self.tag_filter_btn)

        self.group_combo = QComboBox()
        self.group_combo.setToolTip("Draw boxes around states sharing a tag")
        self.group_combo.addItem("No grouping", None)
        self.group_combo.currentIndexChanged.connect(self._on_group_changed)
        graph_bar.addWidget(self.group_combo)

        self.transition_btn = QPushButton("➕ Transition")
        self.transition_btn.setCheckable(True)
        self.transition_btn.setToolTip("Click a source state, then a target state")
        self.transition_btn.setStyleSheet(TOOLBAR_BUTTON_STYLE)
        self.transition_btn.toggled.connect(self.diagram.set_transition_mode)
        graph_bar.addWidget(self.transition_btn)

        create_state_btn = QPushButton("➕ State")
        create_state_btn.setToolTip("Create a new implication from the template")
        create_state_btn.setStyleSheet(TOOLBAR_BUTTON_STYLE)
        create_state_btn.clicked.connect(self._create_state)
        graph_bar.addWidget(create_state_btn)

        graph_bar.addStretch()
        self.path_edit = QLineEdit()
        self.path_edit.setPlaceholderText("Path to status...")
        self.path_edit.setFixedWidth(150)
        self.path_edit.returnPressed.connect(self._highlight_path)
        graph_bar.addWidget(self.path_edit)
        path_btn = QPushButton("Highlight")
        path_btn.clicked.connect(self._highlight_path)
        graph_bar.addWidget(path_btn)
        clear_path_btn = QPushButton("Clear")
        clear_path_btn.clicked.connect(controller.clear_path_highlight)
        graph_bar.addWidget(clear_path_btn)
        self.main_layout.addLayout(graph_bar)

        self.main_layout.addWidget(self.diagram)

        self.status_bar = QStatusBar()
        self.setStatusBar(self.status_bar)
        self.status_bar.showMessage("Ready")

    def _setup_shortcuts(self):
        self.search_shortcut = QShortcut(QKeySequence("Ctrl+K"), self)
        self.search_shortcut.activated.connect(self.open_search)
        self.escape_shortcut = QShortcut(QKeySequence(Qt.Key_Escape), self)
        self.escape_shortcut.activated.connect(self._on_escape)

    # -- loading ---------------------------------------------------------------

    def _resume_session(self):
        last_project = self.session.last_project_path
        last_discovery = self.session.last_discovery
        if not last_project or not last_discovery:
            return
        self.project_edit.setText(last_project)
        self.project_path = last_project
        self._apply_discovery(DiscoveryResult.from_dict(last_discovery), remember=False)
        self.status_bar.showMessage(f"Resumed {last_project} from cache ({len(self.model.nodes)} states)")

    def _browse_project(self):
        path = QFileDialog.getExistingDirectory(self, "Choose Project", self.project_edit.text() or str(Path.cwd()))
        if path:
            self.project_edit.setText(path)
            self.scan(path)

    def _scan_clicked(self):
        path = self.project_edit.text().strip()
        if not path:
            QMessageBox.warning(self, "No Project", "Enter a project path to scan.")
            return
        self.scan(path)

    def scan(self, project_path: str) -> bool:
        """Full scan through the backend. Returns False when it failed."""
        self.status_bar.showMessage(f"Scanning {project_path}...")
        QApplication.setOverrideCursor(QCursor(Qt.WaitCursor))
        try:
            discovery = self.api.scan(project_path)
        except ApiError as e:
            QApplication.restoreOverrideCursor()
            QMessageBox.critical(self, "Scan Failed", f"Failed to scan project:\n{e}")
            self.status_bar.showMessage(f"Error: {e}")
            return False
        QApplication.restoreOverrideCursor()

        self.offline = False
        self.project_path = project_path
        self._apply_discovery(discovery)
        return True

    def load_offline(self, file_path: str) -> bool:
        """Load a saved DiscoveryResult JSON instead of asking the backend."""
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                payload = json.load(f)
        except (OSError, ValueError) as e:
            QMessageBox.critical(self, "Error", f"Failed to load discovery file:\n{e}")
            return False
        discovery = DiscoveryResult.from_dict(payload)
        self.offline = True
        self.project_path = discovery.project_path
        self.project_edit.setText(self.project_path)
        self._apply_discovery(discovery, remember=False)
        self.status_bar.showMessage(f"Offline: loaded {len(self.model.nodes)} states from {Path(file_path).name}")
        return True

    def _apply_discovery(self, discovery: DiscoveryResult, remember: bool = True):
        self.discovery = discovery
        self.model = build_graph_from_discovery(discovery)
        self.analysis = analyze_patterns(discovery)
        self.issues = analyze_issues(discovery)
        self.diagram.set_model(self.model, self.project_path)
        self._rebuild_tag_controls()
        self.setWindowTitle(f"{APP_TITLE} - {Path(self.project_path).name or 'untitled'}")
        self.issues_btn.setText(f"Issues ({self.issues.count('error')})")
        self.status_bar.showMessage(
            f"Loaded {len(self.model.nodes)} states, {len(self.model.edges)} transitions")
        if remember and self.project_path:
            try:
                self.session.remember_scan(self.project_path, discovery.raw,
                                           self.model.to_dict(), self.analysis.to_dict())
            except OSError as e:
                logger.error("Could not write session cache: %s", e)

    def refresh_single_file(self, file_path: str):
        """Re-parse one implication and rebuild; full scan when that is not possible."""
        if self.discovery is None or self.offline:
            return
        try:
            updated = self.api.parse_single_file(file_path)
        except ApiError as e:
            logger.warning("Fast refresh failed for %s (%s); running full scan", file_path, e)
            self.scan(self.project_path)
            return
        known = {imp.path for imp in self.discovery.implications}
        if updated.get('path') not in known:
            logger.warning("Fast refresh returned unknown path %s; running full scan", updated.get('path'))
            self.scan(self.project_path)
            return
        self._apply_discovery(self.discovery.replace_implication(updated))

    def _after_save(self, file_path: str, full: bool):
        if full:
            self.scan(self.project_path)
        else:
            self.refresh_single_file(file_path)

    # -- tags ------------------------------------------------------------------

    def _rebuild_tag_controls(self):
        self.tag_menu.clear()
        self._tag_actions = {}
        for category, values in sorted(self.model.discovered_tags.items()):
            section = self.tag_menu.addSection(category)
            section.setEnabled(False)
            for value in values:
                key = f"{category}:{value}"
                action = QAction(value, self.tag_menu)
                action.setCheckable(True)
                action.setChecked(key in self.diagram.tag_filters)
                action.toggled.connect(self._on_tag_filter_changed)
                self.tag_menu.addAction(action)
                self._tag_actions[key] = action

        current = self.group_combo.currentData()
        self.group_combo.blockSignals(True)
        self.group_combo.clear()
        self.group_combo.addItem("No grouping", None)
        for category in sorted(self.model.discovered_tags):
            self.group_combo.addItem(f"Group by {category}", category)
        index = self.group_combo.findData(current)
        self.group_combo.setCurrentIndex(max(index, 0))
        self.group_combo.blockSignals(False)

    def _on_tag_filter_changed(self):
        active = [key for key, action in self._tag_actions.items() if action.isChecked()]
        self.diagram.set_tag_filters(active)
        label = f"Tags ({len(active)}) ▾" if active else "Tags ▾"
        self.tag_filter_btn.setText(label)

    def _on_group_changed(self, index: int):
        category = self.group_combo.itemData(index)
        self.diagram.set_group_categories([category] if category else [])

    # -- graph actions ---------------------------------------------------------

    def _save_layout(self):
        if self.offline:
            self.diagram.controller.save_layout(remote=False)
            return
        try:
            self.diagram.controller.save_layout(remote=True)
        except ApiError as e:
            QMessageBox.critical(self, "Error", f"Layout saved locally, but not to the backend:\n{e}")
            return
        self.status_bar.showMessage("Layout saved")

    def _reset_layout(self):
        try:
            self.diagram.controller.reset_layout(remote=not self.offline)
        except ApiError as e:
            QMessageBox.critical(self, "Error", f"Failed to reset layout on the backend:\n{e}")
            return
        self.status_bar.showMessage("Layout reset")

    def _highlight_path(self):
        target = self.path_edit.text().strip()
        if not target:
            return
        result = self.diagram.controller.highlight_path_to(target)
        if result is None:
            self.status_bar.showMessage(f"No path to '{target}'")
        else:
            self.status_bar.showMessage(f"Path: {' → '.join(result.nodes)} ({result.length} steps)")

    def _on_picker_state(self, state: str):
        if state == 'source_selected':
            self.status_bar.showMessage("Now click the target state")
        elif self.diagram.transition_mode:
            self.status_bar.showMessage("Click the source state")

    def _on_transition_requested(self, payload: Dict):
        if self.offline:
            QMessageBox.information(self, "Offline", "Transitions cannot be added in offline mode.")
            return
        existing = [edge.event for edge in self.model.edges if edge.source == payload['source']['id']]
        dialog = AddTransitionDialog(self, self.api, payload['source'], payload['target'], existing)
        if dialog.exec() == QDialog.Accepted:
            self.status_bar.showMessage(f"Added {dialog.result_event}")
            self.scan(self.project_path)

    def _create_state(self):
        if self.offline or not self.project_path:
            QMessageBox.information(self, "No Project", "Scan a project before creating states.")
            return
        dialog = CreateStateDialog(self, self.api, self.project_path, sorted(self.model.nodes),
                                   self.analysis)
        if dialog.exec() == QDialog.Accepted:
            self.status_bar.showMessage(f"Created {dialog.created_file}")
            self.scan(self.project_path)

    def show_state_detail(self, node_id: str):
        if self.discovery is None:
            return
        detail = resolve_state_detail(node_id, self.discovery)
        if detail is None:
            QMessageBox.warning(self, "Not Found", f"State '{node_id}' is not in the current scan.")
            return
        dialog = StateDetailDialog(self, detail, self.api, '' if self.offline else self.project_path,
                                   self.analysis, on_rescan=self._after_save)
        dialog.exec()

    def open_search(self):
        if self.model.is_empty:
            return
        overlay = SearchOverlay(self, self.model)
        overlay.nodePicked.connect(self.diagram.focus_node)
        overlay.exec()

    def _show_issues(self):
        if self.issues is None:
            return
        dialog = IssuesDialog(self, self.issues)
        dialog.nodePicked.connect(self.diagram.focus_node)
        dialog.exec()

    def _clear_cache(self):
        self.session.clear()
        self.status_bar.showMessage("Cache cleared")

    def _on_escape(self):
        if self.transition_btn.isChecked():
            self.transition_btn.setChecked(False)
            self.status_bar.showMessage("Transition mode cancelled")
        else:
            self.diagram.controller.clear_path_highlight()

    def closeEvent(self, event):
        self.diagram.teardown()
        event.accept()


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Explore and edit implication state machines")
    parser.add_argument('--project', help="Project path to scan on startup")
    parser.add_argument('--api-url', help=f"Backend URL (default: $IMPLICATIONS_API_URL or {config.DEFAULT_API_URL})")
    parser.add_argument('--offline', metavar='FILE', help="Load a saved DiscoveryResult JSON instead of scanning")
    parser.add_argument('-v', '--verbose', action='store_true', help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    app = QApplication(sys.argv[:1])
    window = ImplicationsExplorer(api=ApiClient(base_url=args.api_url),
                                  resume=not (args.project or args.offline))
    window.show()
    if args.offline:
        window.load_offline(args.offline)
    elif args.project:
        window.project_edit.setText(args.project)
        window.scan(args.project)
    sys.exit(app.exec())


if __name__ == '__main__':
    main()
