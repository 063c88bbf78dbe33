"""
Parallax — Parallel Multi-Worker Code Analysis over a Local LLM Server

A single source file and its dependency list are fanned out to a pool of
specialized language-model workers (content, structure, imports, synthesis)
that run against an Ollama-compatible generation endpoint. Their partial,
loosely-structured answers are merged into one report.

Layers (bottom to top):
    1. Generation client (buffered + streaming NDJSON, model auto-selection)
    2. Worker pool (specialized workers, liveness probes, running statistics)
    3. Task scheduler (typed, prioritized tasks, round-robin lanes)
    4. Task executor (prompt templates, best-effort JSON extraction)
    5. Synthesizer (LLM summary with deterministic fallback)
    6. Orchestrator (single entry point: analyze_in_parallel)
"""

__version__ = "0.1.0"
