# implications_explorer/suggestions.py
"""
Pattern statistics over the existing states, and authoring suggestions drawn from them.

Suggestions only propose values. The caller decides what to apply; frequent
required fields and setup actions are flagged as one-click `applicable`,
everything else is informational.
"""

import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .discovery import DiscoveryResult, Implication

logger = logging.getLogger(__name__)

VERB_OBJECT = 'VERB_OBJECT'
OBJECT_VERB = 'OBJECT_VERB'
SINGLE_VERB = 'SINGLE_VERB'
OTHER = 'OTHER'
CONVENTIONS = (VERB_OBJECT, OBJECT_VERB, SINGLE_VERB, OTHER)

COMMON_VERBS = (
    'SUBMIT', 'ACCEPT', 'REJECT', 'CREATE', 'UPDATE', 'DELETE',
    'CANCEL', 'REVIEW', 'APPROVE', 'CONFIRM', 'START', 'FINISH',
    'COMPLETE', 'PROCESS', 'SEND', 'REQUEST', 'EDIT', 'REMOVE',
)

FIELD_THRESHOLD = 0.5
SETUP_THRESHOLD = 0.6

TOP_BUTTONS = 5
TOP_VERBS = 5
TOP_FIELDS = 10
TOP_SETUP_ACTIONS = 10
TOP_COMBINATIONS = 3
MAX_BUTTON_SUGGESTIONS = 3

# Keys in an entry assign() that are xstate plumbing, not context fields
_ENTRY_INTERNALS = {'type', 'event', 'context', 'params'}


@dataclass
class Frequency:
    value: str
    count: int
    frequency: float

    @property
    def percentage(self) -> str:
        return f"{round(self.frequency * 100)}%"


@dataclass
class ButtonPatterns:
    convention: str
    confidence: float
    distribution: Dict[str, float]
    most_common: List[Frequency]
    top_verbs: List[Frequency]
    total: int


@dataclass
class FieldPatterns:
    required: List[Frequency]
    context: List[Frequency]
    combined: List[Frequency]
    combinations: List[Frequency]
    total_unique: int


@dataclass
class PatternAnalysis:
    total_states: int = 0
    buttons: Optional[ButtonPatterns] = None
    fields: Optional[FieldPatterns] = None
    setup: List[Frequency] = field(default_factory=list)
    platforms: List[Frequency] = field(default_factory=list)

    @property
    def no_data(self) -> bool:
        return self.total_states == 0

    @property
    def most_common_platform(self) -> str:
        return self.platforms[0].value if self.platforms else 'unknown'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _ranked(counts: Counter, total: int, limit: Optional[int] = None) -> List[Frequency]:
    # Counter.most_common keeps first-seen order among ties
    return [Frequency(value, count, count / total if total else 0.0)
            for value, count in counts.most_common(limit)]


def detect_naming_convention(buttons: List[str]):
    """Return (convention, confidence, distribution) over SNAKE_CASE button names."""
    tally = {name: 0 for name in CONVENTIONS}
    for button in buttons:
        parts = button.split('_')
        if len(parts) == 1:
            tally[SINGLE_VERB] += 1
        elif len(parts) == 2 and parts[0] in COMMON_VERBS:
            tally[VERB_OBJECT] += 1
        elif len(parts) == 2 and parts[1] in COMMON_VERBS:
            tally[OBJECT_VERB] += 1
        else:
            tally[OTHER] += 1

    total = len(buttons)
    if not total:
        return OTHER, 0.0, {name: 0.0 for name in CONVENTIONS}

    best, best_count = OTHER, 0
    for name in CONVENTIONS:
        if tally[name] > best_count:
            best, best_count = name, tally[name]
    return best, best_count / total, {name: count / total for name, count in tally.items()}


def analyze_buttons(implications: List[Implication]) -> Optional[ButtonPatterns]:
    buttons = [imp.metadata.trigger_button for imp in implications if imp.metadata.trigger_button]
    if not buttons:
        return None

    convention, confidence, distribution = detect_naming_convention(buttons)
    verbs = Counter(part for button in buttons for part in button.split('_') if part in COMMON_VERBS)
    total = len(buttons)
    return ButtonPatterns(
        convention=convention,
        confidence=confidence,
        distribution=distribution,
        most_common=_ranked(Counter(buttons), total, TOP_BUTTONS),
        top_verbs=_ranked(verbs, total, TOP_VERBS),
        total=total,
    )


def entry_fields(entry: Any) -> List[str]:
    """Context field names assigned by an xstate `entry` (mapping or list of mappings)."""
    actions = entry if isinstance(entry, list) else [entry]
    names: List[str] = []
    for action in actions:
        if not isinstance(action, dict):
            continue
        for key in action:
            if key not in _ENTRY_INTERNALS and key not in names:
                names.append(key)
    return names


def analyze_fields(implications: List[Implication]) -> FieldPatterns:
    total = len(implications)
    required: Counter = Counter()
    context: Counter = Counter()
    combined: Counter = Counter()
    combos: Counter = Counter()

    for imp in implications:
        fields = imp.metadata.required_fields
        required.update(fields)
        combined.update(fields)
        if len(fields) >= 2:
            combos[','.join(sorted(fields))] += 1

        xstate_config = imp.raw.get('xstateConfig')
        if isinstance(xstate_config, dict):
            for name in entry_fields(xstate_config.get('entry')):
                context[name] += 1
                if name not in required:
                    combined[name] += 1

    return FieldPatterns(
        required=_ranked(required, total, TOP_FIELDS),
        context=_ranked(context, total, TOP_FIELDS),
        combined=_ranked(combined, total, TOP_FIELDS),
        combinations=_ranked(combos, total, TOP_COMBINATIONS),
        total_unique=len(combined),
    )


def analyze_setup(implications: List[Implication]) -> List[Frequency]:
    actions = Counter(
        entry.action_name
        for imp in implications
        for entry in imp.metadata.setup
        if entry.action_name
    )
    return _ranked(actions, len(implications), TOP_SETUP_ACTIONS)


def analyze_platforms(implications: List[Implication]) -> List[Frequency]:
    platforms = Counter(imp.metadata.platform or 'unknown' for imp in implications)
    return _ranked(platforms, len(implications))


def analyze_patterns(discovery: DiscoveryResult) -> PatternAnalysis:
    """Frequency statistics over every implication in the scan."""
    implications = discovery.implications
    if not implications:
        return PatternAnalysis()

    analysis = PatternAnalysis(
        total_states=len(implications),
        buttons=analyze_buttons(implications),
        fields=analyze_fields(implications),
        setup=analyze_setup(implications),
        platforms=analyze_platforms(implications),
    )
    logger.info("Analyzed patterns over %d states (button convention: %s)",
                analysis.total_states,
                analysis.buttons.convention if analysis.buttons else 'n/a')
    return analysis


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

@dataclass
class Suggestion:
    value: str
    reason: str
    confidence: float = 0.0
    applicable: bool = False


@dataclass
class SuggestionSet:
    trigger_button: List[Suggestion] = field(default_factory=list)
    required_fields: List[Suggestion] = field(default_factory=list)
    setup_actions: List[Suggestion] = field(default_factory=list)
    platform: Optional[Suggestion] = None

    @property
    def is_empty(self) -> bool:
        return not (self.trigger_button or self.required_fields or self.setup_actions or self.platform)


def suggest_button_names(state_name: str, buttons: ButtonPatterns) -> List[Suggestion]:
    if not state_name:
        return []
    reason = f"Matches {buttons.convention} pattern ({buttons.confidence:.0%} confidence)"
    verbs = [v.value for v in buttons.top_verbs[:MAX_BUTTON_SUGGESTIONS]]

    if buttons.convention == VERB_OBJECT:
        obj = state_name.split('_')[-1].upper() or 'BOOKING'
        values = [f"{verb}_{obj}" for verb in verbs]
    elif buttons.convention == SINGLE_VERB:
        values = verbs
    else:
        return []
    return [Suggestion(value=v, reason=reason, confidence=buttons.confidence)
            for v in values[:MAX_BUTTON_SUGGESTIONS]]


def _frequency_suggestions(stats: Iterable[Frequency], threshold: float,
                           already: Iterable[str]) -> List[Suggestion]:
    taken = set(already)
    return [
        Suggestion(
            value=stat.value,
            reason=f"Used in {stat.percentage} of states",
            confidence=stat.frequency,
            applicable=stat.frequency > threshold,
        )
        for stat in stats
        if stat.value not in taken
    ]


def generate_suggestions(analysis: PatternAnalysis,
                         current_input: Optional[Dict[str, Any]] = None) -> SuggestionSet:
    """Proposals for a state being authored.

    current_input may hold 'stateName', 'requiredFields' and 'setupActions';
    values already chosen are not proposed again.
    """
    current_input = current_input or {}
    suggestions = SuggestionSet()
    if analysis.no_data:
        return suggestions

    if analysis.buttons is not None:
        suggestions.trigger_button = suggest_button_names(current_input.get('stateName') or '',
                                                          analysis.buttons)
    if analysis.fields is not None:
        suggestions.required_fields = _frequency_suggestions(
            analysis.fields.required, FIELD_THRESHOLD, current_input.get('requiredFields') or [])
    suggestions.setup_actions = _frequency_suggestions(
        analysis.setup, SETUP_THRESHOLD, current_input.get('setupActions') or [])

    if analysis.platforms:
        suggestions.platform = Suggestion(value=analysis.most_common_platform,
                                          reason='Most common platform in your project',
                                          confidence=analysis.platforms[0].frequency)
    return suggestions
