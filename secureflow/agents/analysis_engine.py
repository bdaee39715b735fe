"""LLM-backed code analysis engine.

Implements the three engine calls the pipeline needs on top of LLMClient:
- analyze_file: findings and a 0-100 security score for one file
- propose_fix: a replacement snippet for one finding
- build_threat_model: components, data flows and attack vectors from a file list

Every call asks for pure JSON and parses the reply with parse_json_safe.
LLM and parsing failures surface as TransientExternalError so callers can
decide whether the failure is per-unit or fatal.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from secureflow.agents.schemas import FileAnalysis, FixProposal
from secureflow.core.exceptions import TransientExternalError
from secureflow.core.llm_client import LLMClient, LLMError, parse_json_safe
from secureflow.schemas.analysis import ThreatModel

logger = logging.getLogger(__name__)

# Keep prompts bounded; files beyond this are truncated
MAX_CONTENT_CHARS = 24000

SYSTEM_PROMPT = (
    "You are a senior application security engineer. "
    "Answer ONLY with a valid JSON document, no markdown and no explanations."
)

ANALYZE_TEMPLATE = """File: {path}
```
{content}
```

Return:
{{
  "vulnerabilities": [
    {{"type": "SQL_INJECTION", "severity": "LOW|MEDIUM|HIGH|CRITICAL", "line": 1,
      "description": "...", "suggestedFix": "...", "owaspCategory": "A03:2021",
      "code": "the vulnerable line", "confidence": 0.0, "exploitability": 0.0, "impact": 0.0}}
  ],
  "securityScore": 0,
  "threatLevel": "LOW|MEDIUM|HIGH|CRITICAL"
}}"""

FIX_TEMPLATE = """File: {file}
Vulnerability: {vuln_type} (severity {severity})
Vulnerable code:
```
{code}
```

Return:
{{"fixedCode": "replacement for the vulnerable code only", "confidence": 0, "description": "..."}}
confidence is a percentage between 0 and 100."""

THREAT_MODEL_TEMPLATE = """Project files:
{paths}

Return:
{{"nodes": [], "edges": [], "attackVectors": [], "attackSurface": {{}}}}"""


class LLMAnalysisEngine:
    def __init__(self, llm_client: LLMClient, timeout: float = 120.0):
        self._llm = llm_client
        self._timeout = timeout

    async def _ask(self, prompt: str, max_tokens: int = 2048) -> Any:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            raw = await self._llm.chat(messages=messages, max_tokens=max_tokens, timeout=self._timeout)
            return parse_json_safe(raw)
        except (LLMError, ValueError) as exc:
            raise TransientExternalError(str(exc)) from exc

    async def analyze_file(self, content: str, path: str) -> FileAnalysis:
        prompt = ANALYZE_TEMPLATE.format(path=path, content=content[:MAX_CONTENT_CHARS])
        data = await self._ask(prompt)
        try:
            return FileAnalysis.model_validate(data)
        except PydanticValidationError as exc:
            raise TransientExternalError(f"Malformed analysis for {path}: {exc}") from exc

    async def propose_fix(self, file: str, code: str, vuln_type: str, severity: str) -> FixProposal:
        prompt = FIX_TEMPLATE.format(file=file, code=code, vuln_type=vuln_type, severity=severity)
        data = await self._ask(prompt, max_tokens=1024)
        try:
            return FixProposal.model_validate(data)
        except PydanticValidationError as exc:
            raise TransientExternalError(f"Malformed fix for {file}: {exc}") from exc

    async def build_threat_model(self, paths: list[str]) -> ThreatModel:
        prompt = THREAT_MODEL_TEMPLATE.format(paths=json.dumps(paths, indent=2))
        data = await self._ask(prompt)
        try:
            return ThreatModel.model_validate(data)
        except PydanticValidationError as exc:
            raise TransientExternalError(f"Malformed threat model: {exc}") from exc
