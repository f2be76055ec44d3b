#!/usr/bin/env python3
"""
Ollama Client - Local LLM and embedding calls with timeout and bounded retry
Used by the optional semantic and AI-assisted matching tiers
"""

import re
import json
import time
import logging
from typing import Any, Callable, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class OllamaError(Exception):
    """Ollama call failed after all retries, or returned something unusable"""


class OllamaClient:
    """Thin wrapper over the Ollama HTTP API"""

    def __init__(self, base_url: str = 'http://localhost:11434', model_name: str = 'llama3.2:1b',
                 embedding_model: str = 'nomic-embed-text', timeout: float = 10,
                 max_retries: int = 3, backoff: float = 2.0, temperature: float = 0.1,
                 session: Optional[requests.Session] = None, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize Ollama client

        Args:
            base_url: Ollama server URL
            model_name: Generation model
            embedding_model: Embedding model
            timeout: Per-request timeout in seconds
            max_retries: Attempts per call
            backoff: First retry delay in seconds, doubled after every failure
            temperature: Sampling temperature for generation (low for consistency)
            session: Optional requests session
            sleep: Sleep function (replaced in tests)
        """
        self.base_url = base_url.rstrip('/')
        self.model_name = model_name
        self.embedding_model = embedding_model
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.backoff = backoff
        self.temperature = temperature
        self.session = session or requests.Session()
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'OllamaClient':
        return cls(
            base_url=config.get('base_url', 'http://localhost:11434'),
            model_name=config.get('model_name', 'llama3.2:1b'),
            embedding_model=config.get('embedding_model', 'nomic-embed-text'),
            timeout=config.get('timeout', 10),
            max_retries=config.get('max_retries', 3),
            backoff=config.get('backoff', 2.0),
            temperature=config.get('temperature', 0.1),
        )

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f'{self.base_url}{path}'
        delay = self.backoff
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.post(url, json=payload, timeout=self.timeout)
            except requests.Timeout as e:
                last_error = e
                logger.debug(f"Ollama request timeout ({path}), attempt {attempt}/{self.max_retries}")
            except requests.RequestException as e:
                last_error = e
                logger.debug(f"Ollama request error ({path}): {e}, attempt {attempt}/{self.max_retries}")
            else:
                if response.status_code == 200:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise OllamaError(f"Ollama returned invalid JSON: {e}") from e
                if response.status_code not in RETRYABLE_STATUS:
                    raise OllamaError(f"Ollama returned status {response.status_code}: {response.text[:200]}")
                last_error = OllamaError(f"Ollama returned status {response.status_code}")
                logger.debug(f"{last_error}, attempt {attempt}/{self.max_retries}")

            if attempt < self.max_retries:
                self._sleep(delay)
                delay *= 2

        raise OllamaError(f"Ollama call {path} failed after {self.max_retries} attempts: {last_error}")

    def embed(self, text: str) -> List[float]:
        """
        Embed text with the embedding model

        Raises:
            OllamaError: request failed or no embedding returned
        """
        result = self._post('/api/embeddings', {'model': self.embedding_model, 'prompt': text})
        embedding = result.get('embedding')
        if not embedding:
            raise OllamaError("Ollama returned no embedding")
        return [float(v) for v in embedding]

    def generate_json(self, prompt: str) -> Dict[str, Any]:
        """
        Run a JSON-mode generation and parse the reply

        Raises:
            OllamaError: request failed or the reply holds no JSON object
        """
        result = self._post('/api/generate', {
            'model': self.model_name,
            'prompt': prompt,
            'stream': False,
            'format': 'json',
            'options': {
                'temperature': self.temperature,
                'num_predict': 200,
            },
        })
        text = (result.get('response') or '').strip()
        json_match = re.search(r'\{.*\}', text, re.DOTALL)
        if not json_match:
            raise OllamaError(f"No JSON object in Ollama reply: {text[:100]}")
        try:
            return json.loads(json_match.group(0))
        except json.JSONDecodeError as e:
            raise OllamaError(f"Unparseable Ollama reply: {e}") from e
