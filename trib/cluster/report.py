"""
Audit Report Definitions

Audits return an AuditReport instead of appending to shared state, so
every checker can be run and tested on its own and the caller decides
how to combine and render the results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class IssueKind(Enum):
    """Enumeration of reportable cluster problems."""
    CONSISTENCY = "consistency"
    COVERAGE = "coverage"
    OPEN_SLOT = "open_slot"
    FIX = "fix"
    ORPHAN_REPLICA = "orphan_replica"
    UNREACHABLE = "unreachable"


class Severity(Enum):
    """Enumeration of issue severities."""
    ERROR = "ERR"
    WARNING = "WARNING"


@dataclass
class ClusterIssue:
    """
    A single problem found while auditing or repairing the cluster.

    Attributes:
        kind: What kind of problem this is
        message: Human readable description
        severity: ERROR for problems, WARNING for anomalies
        node_id: The node the problem is about, if any
        slot: The slot the problem is about, if any
    """
    kind: IssueKind
    message: str
    severity: Severity = Severity.ERROR
    node_id: Optional[str] = None
    slot: Optional[int] = None

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.message}"


@dataclass
class AuditReport:
    """Ordered collection of issues produced by one or more audits."""
    issues: List[ClusterIssue] = field(default_factory=list)

    def error(self, kind: IssueKind, message: str, **context) -> ClusterIssue:
        """Record an error and return it."""
        issue = ClusterIssue(kind=kind, message=message, **context)
        self.issues.append(issue)
        return issue

    def extend(self, other: "AuditReport") -> "AuditReport":
        """Append every issue of another report, returning self."""
        self.issues.extend(other.issues)
        return self

    @property
    def errors(self) -> List[ClusterIssue]:
        return [i for i in self.issues if i.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[ClusterIssue]:
        return [i for i in self.issues if i.severity == Severity.WARNING]

    @property
    def ok(self) -> bool:
        """True when no errors were recorded (warnings are allowed)."""
        return not self.errors

    def of_kind(self, kind: IssueKind) -> List[ClusterIssue]:
        return [i for i in self.issues if i.kind == kind]

    def __len__(self) -> int:
        return len(self.issues)
