from __future__ import annotations

from typing import List, Sequence

from assistant.analysis.models import Chunk, ChunkAnalysisResult, RepositorySummary

SDLC_SYSTEM_PROMPT = (
    "You are an expert Software Development Lifecycle (SDLC) consultant and security analyst with deep expertise in:\n"
    "- Security & compliance: vulnerability assessment, secure coding practices, compliance frameworks\n"
    "- Code quality: architecture patterns, maintainability, performance optimization\n"
    "- DevOps & CI/CD: automation, deployment strategies, infrastructure as code\n"
    "- Technology assessment: modern frameworks, cloud-native patterns, service decomposition\n"
    "- SDLC optimization: agile practices, team efficiency, delivery pipeline optimization\n\n"
    "Analysis approach:\n"
    "1. Thorough but focused: comprehensive analysis within the response limit\n"
    "2. Actionable: every recommendation is specific and implementable\n"
    "3. Risk-prioritized: critical issues first\n"
    "4. Context-aware: consider the actual technology stack\n"
    "5. Grounded: reference industry standards and proven practices\n\n"
    "Response format:\n"
    "- Clear headings and bullet points\n"
    "- Findings ordered by severity and impact\n"
    "- Quote short code snippets when pointing at an issue\n"
    "- Concrete next steps for each recommendation\n"
)

CHUNK_RUBRIC = (
    "## Analysis Request\n\n"
    "Analyze this code chunk for Software Development Lifecycle (SDLC) best practices and provide:\n\n"
    "### 1. Security Assessment\n"
    "- Identify security vulnerabilities and risks\n"
    "- Rate overall security level: HIGH/MEDIUM/LOW risk\n"
    "- Provide specific actionable security recommendations\n\n"
    "### 2. Code Quality Analysis\n"
    "- Assess code structure, maintainability, and best practices\n"
    "- Identify code smells, anti-patterns, and technical debt\n"
    "- Evaluate error handling and logging practices\n\n"
    "### 3. SDLC Compliance Review\n"
    "- Evaluate testing practices and coverage indicators\n"
    "- Assess documentation quality and completeness\n"
    "- Check for CI/CD configuration and automation\n"
    "- Review dependency management and configuration\n\n"
    "### 4. Technology & Architecture Assessment\n"
    "- Evaluate technology choices and architecture patterns\n"
    "- Identify modernization opportunities\n"
    "- Review performance and scalability considerations\n\n"
    "### 5. Priority Recommendations\n"
    "- **Immediate actions** (0-30 days): critical issues requiring immediate attention\n"
    "- **Short-term improvements** (1-3 months): important enhancements\n"
    "- **Strategic initiatives** (3+ months): long-term architectural improvements\n"
)

SYNTHESIS_SECTIONS = (
    "### Required Report Sections:\n\n"
    "#### Executive Summary\n"
    "- Overall security risk assessment (HIGH/MEDIUM/LOW)\n"
    "- Code quality and maintainability score\n"
    "- SDLC maturity level and key gaps\n"
    "- Business impact of findings\n\n"
    "#### Key Findings & Insights\n"
    "- **Critical Issues**: most severe problems requiring immediate attention\n"
    "- **Security Concerns**: consolidated security vulnerabilities and risks\n"
    "- **Code Quality Issues**: technical debt, maintainability concerns\n"
    "- **SDLC Gaps**: missing or inadequate development lifecycle practices\n\n"
    "#### Prioritized Action Plan\n"
    "- **Immediate Actions (0-30 days)**: critical fixes and security patches\n"
    "- **Short-term Improvements (1-3 months)**: quality enhancements and process improvements\n"
    "- **Strategic Initiatives (3-12 months)**: architectural improvements and modernization\n\n"
    "#### Implementation Roadmap\n"
    "- Specific implementation steps for each priority area\n"
    "- Resource requirements and estimated effort\n"
    "- Success metrics and measurement criteria\n\n"
    "#### Summary Metrics\n"
    "- Total issues identified by severity\n"
    "- Estimated technical debt and remediation effort\n"
    "- Compliance and security posture\n"
)


def render_file_block(path: str, estimated_tokens: int, content: str) -> str:
    return f"=== FILE: {path} ({estimated_tokens} tokens) ===\n{content}\n"


def build_chunk_prompt(chunk: Chunk, *, repo_name: str, index: int, total: int) -> str:
    """`index` is 0-based; the prompt shows 1-based chunk numbers."""
    n = index + 1
    files = "\n".join(render_file_block(f.path, f.estimated_tokens, f.content) for f in chunk.files)
    return (
        f"# Repository SDLC Analysis - Chunk {n}/{total}\n\n"
        f"**Repository**: {repo_name}\n"
        f"**Chunk**: {n} of {total}\n"
        f"**Files in chunk**: {len(chunk.files)}\n"
        f"**Estimated tokens**: {chunk.estimated_tokens}\n\n"
        f"{CHUNK_RUBRIC}\n"
        "## Code to Analyze:\n\n"
        f"{files}\n"
        "Provide a structured, actionable analysis with specific recommendations focused on improving SDLC practices.\n"
    )


def combine_chunk_analyses(results: Sequence[ChunkAnalysisResult]) -> str:
    parts: List[str] = [f"## Chunk {r.chunk_index + 1} Analysis\n{r.analysis_text or ''}" for r in results]
    return "\n\n---\n\n".join(parts)


def build_synthesis_prompt(
    succeeded: Sequence[ChunkAnalysisResult], *, total_chunks: int, summary: RepositorySummary
) -> str:
    tech = ", ".join(summary.technologies) or "unknown"
    return (
        "# Repository Comprehensive SDLC Assessment\n\n"
        f"**Repository**: {summary.repository}\n"
        f"**Branch**: {summary.branch}\n"
        "**Analysis Method**: chunked analysis with synthesis\n"
        f"**Chunks Processed**: {len(succeeded)}/{total_chunks}\n"
        f"**Total Files Analyzed**: {summary.relevant_files}\n"
        f"**Technology Stack**: {tech}\n\n"
        "## Task: Synthesize Comprehensive SDLC Report\n\n"
        f"Detailed analyses of {len(succeeded)} code chunks from this repository follow. "
        "Synthesize them into one executive-ready SDLC assessment report. "
        "Merge duplicate findings across chunks instead of listing them twice.\n\n"
        f"{SYNTHESIS_SECTIONS}\n"
        "## Individual Chunk Analyses to Synthesize:\n\n"
        f"{combine_chunk_analyses(succeeded)}\n"
    )
