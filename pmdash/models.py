"""Pydantic models shared by the scanner, registry, exporter and API."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional, Any


# ── Scanner models ──────────────────────────────────────────────────

class Finding(BaseModel):
    type: str
    content: str
    file: str
    line: int
    priority: str = "medium"  # "high" | "medium" | "low"
    category: str = "code"  # "code" | "markdown"
    rawText: str = ""
    # Filled in by process_scan_results
    id: Optional[str] = None
    hash: Optional[str] = None


class ScanSummary(BaseModel):
    totalTodos: int = 0
    byPriority: dict[str, int] = Field(default_factory=lambda: {"high": 0, "medium": 0, "low": 0})
    byType: dict[str, int] = Field(default_factory=dict)
    byFile: dict[str, int] = Field(default_factory=dict)
    filesScanned: int = 0
    scanDuration: int = 0  # milliseconds


class ScanResult(BaseModel):
    todos: list[Finding] = Field(default_factory=list)
    summary: ScanSummary = Field(default_factory=ScanSummary)
    scanDate: str = ""
    rootPath: str = ""


class FileInfo(BaseModel):
    path: str  # relative, forward slashes
    absolutePath: str
    size: int = 0
    extension: str = ""


# ── Completion analysis ─────────────────────────────────────────────

class CompletionAnalysis(BaseModel):
    confidence: int = 0
    status: str = "active"  # likely-completed | probably-completed | possibly-completed | active
    reasons: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    isLikelyCompleted: bool = False


class FindingCompletion(BaseModel):
    finding: Finding
    analysis: CompletionAnalysis


class CompletionReport(BaseModel):
    total: int = 0
    likelyCompleted: int = 0
    probablyCompleted: int = 0
    possiblyCompleted: int = 0
    lowConfidence: int = 0
    active: int = 0  # includes lowConfidence
    analyses: list[FindingCompletion] = Field(default_factory=list)
    safeToClose: list[FindingCompletion] = Field(default_factory=list)
    needsReview: list[FindingCompletion] = Field(default_factory=list)
    possiblyDone: list[FindingCompletion] = Field(default_factory=list)


# ── State models ────────────────────────────────────────────────────

class ProcessedTodo(BaseModel):
    hash: str
    content: str
    file: str
    line: int
    type: str
    priority: str = "medium"
    processedAt: str
    status: str = "pending"  # "pending" | "seen" | "created" | "failed" | "skipped"
    issueUrl: Optional[str] = None
    issueNumber: Optional[int] = None
    error: Optional[str] = None


class StateMetadata(BaseModel):
    totalProcessed: int = 0
    totalIssuesCreated: int = 0
    lastReportDate: Optional[str] = None


class StateFile(BaseModel):
    lastUpdated: str
    processedTodos: list[ProcessedTodo] = Field(default_factory=list)
    metadata: StateMetadata = Field(default_factory=StateMetadata)


class StateStats(BaseModel):
    totalProcessed: int = 0
    totalIssuesCreated: int = 0
    recentlyProcessed: int = 0
    byStatus: dict[str, int] = Field(default_factory=dict)
    byType: dict[str, int] = Field(default_factory=dict)
    lastUpdated: str = ""


# ── Issue creation ──────────────────────────────────────────────────

class IssueOutcome(BaseModel):
    hash: str
    title: str
    status: str  # "created" | "failed" | "skipped" | "dry-run"
    labels: list[str] = Field(default_factory=list)
    issueUrl: Optional[str] = None
    issueNumber: Optional[int] = None
    error: Optional[str] = None


class IssueCreationResult(BaseModel):
    created: int = 0
    failed: int = 0
    skipped: int = 0
    dryRun: bool = False
    results: list[IssueOutcome] = Field(default_factory=list)


# ── Feature registry ────────────────────────────────────────────────

class ProjectInfo(BaseModel):
    name: str = ""
    code: str = ""
    description: str = ""


class Feature(BaseModel):
    id: str
    number: int
    name: str
    description: str = ""
    category: str = ""
    phase: str = ""
    priority: str = "P2"  # P0..P3
    status: str = "planned"  # planned | in-progress | completed | blocked | custom
    dependencies: list[str] = Field(default_factory=list)
    blocks: list[str] = Field(default_factory=list)
    value: str = ""
    tags: list[str] = Field(default_factory=list)
    code: str = ""
    startDate: Optional[str] = None
    completedDate: Optional[str] = None
    notes: Optional[str] = None


class FeatureCreate(BaseModel):
    id: str
    name: str
    description: str = ""
    category: str = ""
    phase: str = ""
    priority: str = "P2"
    status: str = "planned"
    dependencies: list[str] = Field(default_factory=list)
    blocks: list[str] = Field(default_factory=list)
    value: str = ""
    tags: list[str] = Field(default_factory=list)
    code: str = ""
    startDate: Optional[str] = None
    completedDate: Optional[str] = None
    notes: Optional[str] = None


class FeatureUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    phase: Optional[str] = None
    priority: Optional[str] = None
    status: Optional[str] = None
    dependencies: Optional[list[str]] = None
    blocks: Optional[list[str]] = None
    value: Optional[str] = None
    tags: Optional[list[str]] = None
    code: Optional[str] = None
    startDate: Optional[str] = None
    completedDate: Optional[str] = None
    notes: Optional[str] = None


# ── Roadmap models ──────────────────────────────────────────────────

class RoadmapStats(BaseModel):
    total: int = 0
    completed: int = 0
    inProgress: int = 0
    planned: int = 0
    blocked: int = 0
    completionPercentage: int = 0


class RoadmapFeatures(BaseModel):
    planned: list[Feature] = Field(default_factory=list)
    inProgress: list[Feature] = Field(default_factory=list)
    completed: list[Feature] = Field(default_factory=list)
    blocked: list[Feature] = Field(default_factory=list)


class DependencyChain(BaseModel):
    feature: str
    dependencies: list[str] = Field(default_factory=list)
    blocks: list[str] = Field(default_factory=list)


class RoadmapData(BaseModel):
    project: ProjectInfo
    features: RoadmapFeatures
    stats: RoadmapStats
    dependencyChains: list[DependencyChain] = Field(default_factory=list)


# ── Code discovery ──────────────────────────────────────────────────

class DiscoveredFeature(BaseModel):
    name: str
    type: str  # "route" | "api" | "component" | "script" | "dependency"
    file: str
    line: Optional[int] = None
    description: str = ""
    confidence: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class DiscoveryResult(BaseModel):
    features: list[DiscoveredFeature] = Field(default_factory=list)
    filesScanned: int = 0
    byType: dict[str, int] = Field(default_factory=dict)
