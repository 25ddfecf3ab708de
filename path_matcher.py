"""Reconciles a torrent manifest against candidate locations on disk.

When the path search finds several places that could hold a torrent's data,
this module decides which one actually does. For each candidate base path it:

1.  Proposes the structural interpretations worth testing
    (`hypothesize_structures`). A single-file torrent may be the candidate
    itself or sit directly inside it; a multi-file torrent may live in a
    folder named after the torrent, or directly in the candidate.
2.  Stats every file the manifest expects under that interpretation
    (`validate_files`). A failed stat is evidence of absence, never an error.
3.  Turns the evidence into a confidence in [0, 1] (`score_hypothesis`).
4.  Picks the most confident result across all candidates
    (`select_best_candidate`). Ties go to the result evaluated first: base
    paths in the order given, then hypotheses in the order they are proposed.
    An empty candidate set is an explicit no-match outcome.

Only existence and sizes are used as evidence; file contents are never read.

Diagnostics are kept as `MatchTrace` records attached to the results so the
evidence behind a decision can be inspected. Records are also forwarded to
`logging`, but only the first `LOG_SAMPLE_SIZE` entries of each hypothesis are
logged to keep large torrents readable. The sampling only affects logging;
every entry is always checked and counted.
"""
import enum
import logging
import os
import stat
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from manifest import ManifestEntry, TorrentManifest, build_manifest

logger = logging.getLogger(__name__)

LOG_SAMPLE_SIZE = 5

# Single-file scoring
EXACT_MATCH_CONFIDENCE = 1.0
PARTIAL_BASE_CONFIDENCE = 0.5
PARTIAL_RANGE = 0.3
SIZE_MISMATCH_CONFIDENCE = 0.2

# Multi-file scoring
EXISTENCE_WEIGHT = 0.7
PERFECT_MATCH_WEIGHT = 0.3
NEAR_COMPLETE_RATIO = 0.8
NEAR_COMPLETE_BONUS = 0.1
MOSTLY_PRESENT_RATIO = 0.5
MOSTLY_PRESENT_FLOOR = 0.6


class HypothesisKind(enum.Enum):
    FILE_IS_CANDIDATE = "file_is_candidate"
    FILE_IN_DIRECTORY = "file_in_directory"
    WITH_NAME_FOLDER = "with_name_folder"
    DIRECT_IN_BASE_PATH = "direct_in_base_path"


@dataclass(frozen=True)
class MatchTrace:
    """A structured diagnostic record emitted while reconciling a torrent."""
    level: int
    event: str
    hypothesis_id: Optional[str] = None
    entry_index: Optional[int] = None
    evidence: Tuple[Tuple[str, Any], ...] = ()

    def get(self, key: str, default: Any = None) -> Any:
        return dict(self.evidence).get(key, default)

    def format(self) -> str:
        prefix = f"[{self.hypothesis_id}] " if self.hypothesis_id else ""
        if self.entry_index is not None:
            prefix += f"entry {self.entry_index}: "
        details = ", ".join(f"{key}={value!r}" for key, value in self.evidence)
        return f"{prefix}{self.event}" + (f" ({details})" if details else "")


class TraceRecorder:
    """Collects `MatchTrace` records for one reconciliation and forwards them to logging."""

    def __init__(self):
        self._records: List[MatchTrace] = []

    def emit(self, level: int, event: str, hypothesis_id: Optional[str] = None,
             entry_index: Optional[int] = None, log: bool = True, **evidence: Any) -> MatchTrace:
        record = MatchTrace(level=level, event=event, hypothesis_id=hypothesis_id,
                            entry_index=entry_index, evidence=tuple(evidence.items()))
        self._records.append(record)
        if log:
            logger.log(level, record.format())
        return record

    @property
    def records(self) -> Tuple[MatchTrace, ...]:
        return tuple(self._records)

    def for_hypothesis(self, hypothesis_id: str) -> Tuple[MatchTrace, ...]:
        return tuple(r for r in self._records if r.hypothesis_id == hypothesis_id)


@dataclass(frozen=True)
class Hypothesis:
    """One interpretation of where a torrent's files live under a candidate path."""
    hypothesis_id: str
    kind: HypothesisKind
    base_path: str
    root: str

    def resolve(self, entry: ManifestEntry) -> str:
        """Returns the absolute path at which `entry` should exist under this hypothesis."""
        if self.kind is HypothesisKind.FILE_IS_CANDIDATE:
            return self.root
        return os.path.join(self.root, *entry.relative_path.split('/'))


@dataclass(frozen=True)
class FileMatch:
    """The evidence gathered for one manifest entry under one hypothesis."""
    expected_path: str
    resolved_path: str
    exists: bool
    expected_size: int
    actual_size: int
    size_match: bool


@dataclass(frozen=True)
class ValidationEvidence:
    matches: Tuple[FileMatch, ...]
    existing_count: int
    perfect_match_count: int

    @property
    def total_count(self) -> int:
        return len(self.matches)


@dataclass(frozen=True)
class HypothesisResult:
    """A scored hypothesis, ready for candidate selection."""
    hypothesis: Hypothesis
    matches: Tuple[FileMatch, ...]
    existing_count: int
    perfect_match_count: int
    confidence: float
    trace: Tuple[MatchTrace, ...] = ()

    @property
    def base_path(self) -> str:
        return self.hypothesis.base_path

    @property
    def resolved_root(self) -> str:
        return self.hypothesis.root

    @property
    def total_count(self) -> int:
        return len(self.matches)


@dataclass(frozen=True)
class SelectionOutcome:
    """The result of reconciling one torrent against its candidate paths.

    `best` is None when no candidate produced a viable hypothesis. Callers must
    check `matched` before using `base_path`.
    """
    best: Optional[HypothesisResult]
    candidates: Tuple[HypothesisResult, ...] = ()
    trace: Tuple[MatchTrace, ...] = ()

    @property
    def matched(self) -> bool:
        return self.best is not None

    @property
    def base_path(self) -> Optional[str]:
        return self.best.base_path if self.best else None

    @property
    def confidence(self) -> float:
        return self.best.confidence if self.best else 0.0


def _clamp(value: float) -> float:
    return max(0.0, min(value, 1.0))


def _regular_file_size(path: str) -> Optional[int]:
    """Returns the size of `path` if it is a readable regular file, else None."""
    try:
        st = os.stat(path)
    except (OSError, ValueError):
        return None
    if not stat.S_ISREG(st.st_mode):
        return None
    return st.st_size


def hypothesize_structures(base_path: str, manifest: TorrentManifest, candidate_index: int = 0,
                           trace: Optional[TraceRecorder] = None) -> List[Hypothesis]:
    """Lists the structural interpretations worth testing for one candidate path.

    Single-file torrents: the candidate is the file itself (when it is a
    regular file), or a directory holding a file named after the torrent (when
    it is a directory). Multi-file torrents: the candidate must be a directory;
    the files are tested under `<candidate>/<name>` first, then directly under
    the candidate.

    Args:
        base_path: The candidate location returned by the path search.
        manifest: The torrent's manifest.
        candidate_index: Position of `base_path` in the candidate list, used to
            build stable hypothesis ids.
        trace: Optional recorder for diagnostics.

    Returns:
        The hypotheses in evaluation order (possibly empty).
    """
    trace = trace or TraceRecorder()
    try:
        st = os.stat(base_path)
    except (OSError, ValueError) as e:
        trace.emit(logging.DEBUG, "candidate_missing", base_path=base_path, error=str(e))
        return []

    is_dir = stat.S_ISDIR(st.st_mode)
    is_file = stat.S_ISREG(st.st_mode)
    trace.emit(logging.DEBUG, "candidate", base_path=base_path, is_dir=is_dir, is_file=is_file)

    def make(kind: HypothesisKind, root: str) -> Hypothesis:
        return Hypothesis(hypothesis_id=f"{candidate_index}:{kind.value}", kind=kind,
                          base_path=base_path, root=root)

    if manifest.is_single_file:
        if is_file:
            return [make(HypothesisKind.FILE_IS_CANDIDATE, base_path)]
        if is_dir:
            return [make(HypothesisKind.FILE_IN_DIRECTORY, base_path)]
        return []

    if not is_dir:
        trace.emit(logging.DEBUG, "not_a_directory", base_path=base_path)
        return []
    return [
        make(HypothesisKind.WITH_NAME_FOLDER, os.path.join(base_path, manifest.name)),
        make(HypothesisKind.DIRECT_IN_BASE_PATH, base_path),
    ]


def validate_files(hypothesis: Hypothesis, entries: Sequence[ManifestEntry],
                   trace: Optional[TraceRecorder] = None) -> ValidationEvidence:
    """Stats every manifest entry under a hypothesis and records what was found.

    Every entry is checked regardless of how many are logged.
    """
    trace = trace or TraceRecorder()
    hid = hypothesis.hypothesis_id
    trace.emit(logging.DEBUG, "validating", hid, root=hypothesis.root, kind=hypothesis.kind.value,
               entries=len(entries))

    matches = []
    existing = 0
    perfect = 0
    for index, entry in enumerate(entries):
        resolved = hypothesis.resolve(entry)
        actual_size = _regular_file_size(resolved)
        exists = actual_size is not None
        size_match = exists and actual_size == entry.expected_size
        match = FileMatch(
            expected_path=entry.relative_path,
            resolved_path=resolved,
            exists=exists,
            expected_size=entry.expected_size,
            actual_size=actual_size or 0,
            size_match=size_match,
        )
        matches.append(match)
        if exists:
            existing += 1
            if size_match:
                perfect += 1
        trace.emit(logging.DEBUG, "file_checked", hid, index, log=index < LOG_SAMPLE_SIZE,
                   path=resolved, exists=exists, expected_size=entry.expected_size,
                   actual_size=match.actual_size, size_match=size_match)

    trace.emit(logging.DEBUG, "validated", hid, existing=existing, perfect=perfect, total=len(entries))
    return ValidationEvidence(matches=tuple(matches), existing_count=existing, perfect_match_count=perfect)


def score_single_file(match: FileMatch) -> Optional[float]:
    """Scores the lone file of a single-file torrent.

    Returns None when the file does not exist. An exact size match scores 1.0;
    a partially downloaded file scores between 0.5 and 0.8 in proportion to
    how much of it is present; any other size scores 0.2.
    """
    if not match.exists:
        return None
    if match.size_match:
        return EXACT_MATCH_CONFIDENCE
    if 0 < match.actual_size < match.expected_size:
        completion = match.actual_size / match.expected_size
        return _clamp(PARTIAL_BASE_CONFIDENCE + completion * PARTIAL_RANGE)
    return SIZE_MISMATCH_CONFIDENCE


def score_multi_file(existing_count: int, perfect_match_count: int, total_count: int) -> float:
    """Scores a multi-file hypothesis from its existence and size-match counts.

    `existence * 0.7 + perfect * 0.3`, plus 0.1 when more than 80% of the
    files exist, raised to at least 0.6 when more than half exist. The result
    is clamped to 1.0; without the clamp a perfect match would score 1.1.
    """
    if existing_count <= 0 or total_count <= 0:
        return 0.0
    existence_ratio = existing_count / total_count
    perfect_ratio = perfect_match_count / existing_count

    confidence = existence_ratio * EXISTENCE_WEIGHT + perfect_ratio * PERFECT_MATCH_WEIGHT
    if existence_ratio > NEAR_COMPLETE_RATIO:
        confidence += NEAR_COMPLETE_BONUS
    if existence_ratio > MOSTLY_PRESENT_RATIO:
        confidence = max(confidence, MOSTLY_PRESENT_FLOOR)
    return _clamp(confidence)


def score_hypothesis(hypothesis: Hypothesis, manifest: TorrentManifest, evidence: ValidationEvidence,
                     trace: Optional[TraceRecorder] = None) -> Optional[HypothesisResult]:
    """Scores validated evidence, returning None for non-viable hypotheses."""
    trace = trace or TraceRecorder()
    hid = hypothesis.hypothesis_id

    if manifest.is_single_file:
        confidence = score_single_file(evidence.matches[0])
        if confidence is None:
            trace.emit(logging.DEBUG, "not_viable", hid, reason="file missing")
            return None
    else:
        confidence = score_multi_file(evidence.existing_count, evidence.perfect_match_count,
                                      evidence.total_count)
        if confidence <= 0:
            trace.emit(logging.DEBUG, "not_viable", hid, reason="no files exist")
            return None

    trace.emit(logging.DEBUG, "scored", hid, confidence=confidence,
               existing=evidence.existing_count, perfect=evidence.perfect_match_count,
               total=evidence.total_count)
    return HypothesisResult(
        hypothesis=hypothesis,
        matches=evidence.matches,
        existing_count=evidence.existing_count,
        perfect_match_count=evidence.perfect_match_count,
        confidence=confidence,
        trace=trace.for_hypothesis(hid),
    )


def select_best_candidate(results: Iterable[HypothesisResult],
                          trace: Optional[TraceRecorder] = None) -> SelectionOutcome:
    """Picks the result with the highest confidence.

    Only a strictly higher confidence displaces the current best, so ties go
    to the result that came first. Results scoring zero are ignored. When
    nothing is left the outcome has `best=None`.
    """
    trace = trace or TraceRecorder()
    results = tuple(results)
    best: Optional[HypothesisResult] = None
    for result in results:
        trace.emit(logging.DEBUG, "candidate_result", result.hypothesis.hypothesis_id,
                   base_path=result.base_path, confidence=result.confidence)
        if result.confidence <= 0:
            continue
        if best is None or result.confidence > best.confidence:
            best = result

    if best is None:
        trace.emit(logging.WARNING, "no_match", candidates=len(results))
    else:
        trace.emit(logging.INFO, "selected", best.hypothesis.hypothesis_id,
                   base_path=best.base_path, root=best.resolved_root, confidence=best.confidence)
    return SelectionOutcome(best=best, candidates=results, trace=trace.records)


def reconcile(manifest: TorrentManifest, candidate_paths: Sequence[str]) -> SelectionOutcome:
    """Finds which candidate path holds the data described by `manifest`.

    Args:
        manifest: The torrent's expected files.
        candidate_paths: Base paths to test, in priority order.

    Returns:
        The selection outcome, including every scored hypothesis and the full
        diagnostic trace.
    """
    trace = TraceRecorder()
    trace.emit(logging.DEBUG, "reconcile_start", torrent=manifest.name, mode=manifest.mode.value,
               files=len(manifest.entries), candidates=len(candidate_paths))

    results = []
    for index, base_path in enumerate(candidate_paths):
        for hypothesis in hypothesize_structures(base_path, manifest, index, trace):
            evidence = validate_files(hypothesis, manifest.entries, trace)
            result = score_hypothesis(hypothesis, manifest, evidence, trace)
            if result is not None:
                results.append(result)
    return select_best_candidate(results, trace)


def find_correct_torrent_path(torrent_data: Mapping, candidate_paths: Sequence[str]) -> SelectionOutcome:
    """Builds the manifest for a decoded torrent and reconciles it.

    Raises:
        ManifestError: If the torrent descriptor is malformed.
    """
    return reconcile(build_manifest(torrent_data), candidate_paths)
