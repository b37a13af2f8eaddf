# implications_explorer/issues.py
"""Structural problems in a scanned state machine, reported per state.

Each issue carries the fixes a user might reach for. Suggestions marked
auto_fixable only touch the state's own metadata.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List

from .discovery import DiscoveryResult, Implication
from .state_graph import node_id_for, resolve_state, state_lookup

logger = logging.getLogger(__name__)

ERROR = 'error'
WARNING = 'warning'
INFO = 'info'
SEVERITIES = (ERROR, WARNING, INFO)

ISOLATED_STATE = 'isolated-state'
UNREACHABLE_STATE = 'unreachable-state'
BROKEN_TRANSITION = 'broken-transition'
MISSING_UI_COVERAGE = 'missing-ui-coverage'
MISSING_TRANSITIONS = 'missing-transitions'
EMPTY_INHERITANCE = 'empty-inheritance'

# Names that mark a state as an intended dead end
TERMINAL_NAMES = ('completed', 'cancelled', 'deleted', 'archived', 'final')


@dataclass
class IssueSuggestion:
    action: str
    title: str
    description: str = ''
    auto_fixable: bool = False


@dataclass
class Issue:
    severity: str
    type: str
    state: str
    title: str
    message: str
    location: str = ''
    suggestions: List[IssueSuggestion] = field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.severity == ERROR

    @property
    def suggestion_titles(self) -> List[str]:
        return [s.title for s in self.suggestions]


@dataclass
class IssueReport:
    issues: List[Issue] = field(default_factory=list)

    def count(self, severity: str) -> int:
        return sum(1 for issue in self.issues if issue.severity == severity)

    @property
    def by_state(self) -> Dict[str, List[Issue]]:
        grouped: Dict[str, List[Issue]] = {}
        for issue in self.issues:
            grouped.setdefault(issue.state, []).append(issue)
        return grouped

    @property
    def by_type(self) -> Dict[str, int]:
        return dict(Counter(issue.type for issue in self.issues))

    def summary(self) -> str:
        return ', '.join(f"{self.count(s)} {s}" for s in SEVERITIES)


def _add_incoming(description: str) -> IssueSuggestion:
    return IssueSuggestion('add-incoming-transition', 'Add Incoming Transition', description)


def is_terminal_name(*names: str) -> bool:
    return any(term in (name or '').lower() for name in names for term in TERMINAL_NAMES)


def _minimal_overrides(implication: Implication, state: str, name: str) -> List[Issue]:
    """Screens in uiCoverage that override a base screen with only a description."""
    platforms = implication.metadata.ui_coverage.get('platforms')
    if not isinstance(platforms, dict):
        return []
    issues = []
    for platform_name, platform_data in platforms.items():
        screens = platform_data.get('screens') if isinstance(platform_data, dict) else None
        for screen in screens if isinstance(screens, list) else []:
            if not isinstance(screen, dict) or not screen.get('description'):
                continue
            if screen.get('visible') or screen.get('hidden'):
                continue
            screen_name = screen.get('name') or '?'
            issues.append(Issue(
                severity=INFO,
                type=EMPTY_INHERITANCE,
                state=state,
                title='Minimal override in UI coverage',
                message=(f"{name}.{platform_name}.{screen_name} extends its base screen but only "
                         f"overrides the description."),
                location=implication.path,
                suggestions=[
                    IssueSuggestion('add-overrides', 'Add Meaningful Overrides',
                                    'Add visible or hidden elements to this screen'),
                    IssueSuggestion('use-base-directly', 'Use Base Directly',
                                    'Drop the override and reference the base screen', True),
                ],
            ))
    return issues


def analyze_issues(discovery: DiscoveryResult) -> IssueReport:
    stateful = discovery.stateful_implications
    lookup = state_lookup(stateful)
    report = IssueReport()

    incoming: Counter = Counter()
    outgoing: Counter = Counter()
    for transition in discovery.transitions:
        source = resolve_state(lookup, transition.from_state)
        target = resolve_state(lookup, transition.to_state)
        if source is not None:
            outgoing[source] += 1
        if target is not None:
            incoming[target] += 1
        if source is not None and target is None:
            report.issues.append(Issue(
                severity=ERROR,
                type=BROKEN_TRANSITION,
                state=source,
                title=f"Broken transition: {transition.event}",
                message=(f"{transition.from_state} has {transition.event} pointing to "
                         f"'{transition.to_state}', which is not a known state."),
                suggestions=[
                    IssueSuggestion('check-registry', 'Check State Registry',
                                    'Verify the state registry and naming patterns'),
                    IssueSuggestion('fix-target', 'Fix Transition Target',
                                    'Point the transition at an existing state'),
                    IssueSuggestion('remove-transition', 'Remove Transition',
                                    'Delete this broken transition', True),
                ],
            ))

    seen = set()
    for implication in stateful:
        state = node_id_for(implication)
        if state in seen:
            continue
        seen.add(state)
        name = implication.metadata.class_name or state

        if not incoming[state] and not outgoing[state]:
            report.issues.append(Issue(
                severity=ERROR,
                type=ISOLATED_STATE,
                state=state,
                title='Isolated state',
                message=f"{name} has no incoming or outgoing transitions.",
                location=implication.path,
                suggestions=[
                    _add_incoming('Connect this state with a transition from another state'),
                    IssueSuggestion('delete-state', 'Delete This State',
                                    'Remove the state if it is not needed'),
                ],
            ))
        else:
            if not incoming[state]:
                report.issues.append(Issue(
                    severity=WARNING,
                    type=UNREACHABLE_STATE,
                    state=state,
                    title='Unreachable state',
                    message=f"{name} has no incoming transitions and can never be reached.",
                    location=implication.path,
                    suggestions=[
                        _add_incoming('Make this state reachable from another state'),
                        IssueSuggestion('mark-initial', 'Mark as Initial State',
                                        'Record in the meta that this is the starting state', True),
                    ],
                ))
            if not outgoing[state] and not is_terminal_name(name, state):
                report.issues.append(Issue(
                    severity=WARNING,
                    type=MISSING_TRANSITIONS,
                    state=state,
                    title='No transitions defined',
                    message=f"{name} has no outgoing transitions and may be a dead end.",
                    location=implication.path,
                    suggestions=[
                        IssueSuggestion('add-transition', 'Add Transition',
                                        'Define at least one transition to another state'),
                        IssueSuggestion('mark-terminal', 'Mark as Terminal State',
                                        'Record in the meta that this is a final state', True),
                    ],
                ))

        if not implication.metadata.ui_coverage.get('total'):
            report.issues.append(Issue(
                severity=INFO,
                type=MISSING_UI_COVERAGE,
                state=state,
                title='No UI coverage',
                message=f"{name} defines no UI validations.",
                location=implication.path,
                suggestions=[IssueSuggestion('add-ui-coverage', 'Add UI Coverage',
                                             'Define which elements are visible or hidden')],
            ))
        report.issues.extend(_minimal_overrides(implication, state, name))

    logger.info("Issue analysis: %s", report.summary())
    return report
