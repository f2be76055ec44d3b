#!/usr/bin/env python3
"""
Ollama Client Tests: bounded retry with backoff, non-retryable errors, JSON replies, arbiter parsing
"""

import os
import unittest
from pathlib import Path
from unittest import mock

import requests

# Setup path
TEST_DIR = Path(__file__).parent
PROJECT_ROOT = TEST_DIR.parent
os.chdir(PROJECT_ROOT)

from step2_match.ai_matcher import AIMatchArbiter
from step2_match.catalog import CatalogEntry
from step2_match.ollama_client import OllamaClient, OllamaError

from catalog_fixtures import make_item


def _response(status_code=200, payload=None, text=''):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    response.text = text
    return response


class TestOllamaClient(unittest.TestCase):
    """Test the Ollama HTTP wrapper with a mocked session"""

    def setUp(self):
        self.session = mock.Mock()
        self.sleeps = []
        self.client = OllamaClient(session=self.session, sleep=self.sleeps.append,
                                   max_retries=3, backoff=2.0)

    def test_embed_success(self):
        self.session.post.return_value = _response(payload={'embedding': [0.1, 0.2, 0.3]})
        self.assertEqual(self.client.embed('toner'), [0.1, 0.2, 0.3])

        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], 'http://localhost:11434/api/embeddings')
        self.assertEqual(kwargs['json']['model'], 'nomic-embed-text')
        self.assertEqual(kwargs['timeout'], 10)

    def test_retries_with_doubling_backoff(self):
        self.session.post.side_effect = [
            requests.Timeout('slow'),
            _response(status_code=503),
            _response(payload={'embedding': [1.0]}),
        ]
        self.assertEqual(self.client.embed('toner'), [1.0])
        self.assertEqual(self.session.post.call_count, 3)
        self.assertEqual(self.sleeps, [2.0, 4.0], "Delay should double after each failure")

    def test_gives_up_after_max_retries(self):
        self.session.post.side_effect = requests.ConnectionError('refused')
        with self.assertRaises(OllamaError):
            self.client.embed('toner')
        self.assertEqual(self.session.post.call_count, 3)
        self.assertEqual(len(self.sleeps), 2, "No sleep after the last attempt")

    def test_non_retryable_status_raises_immediately(self):
        self.session.post.return_value = _response(status_code=404, text='model not found')
        with self.assertRaises(OllamaError):
            self.client.embed('toner')
        self.assertEqual(self.session.post.call_count, 1)

    def test_empty_embedding_is_an_error(self):
        self.session.post.return_value = _response(payload={'embedding': []})
        with self.assertRaises(OllamaError):
            self.client.embed('toner')

    def test_generate_json_extracts_object(self):
        self.session.post.return_value = _response(
            payload={'response': 'Sure: {"entry_id": "P300", "confidence": 0.9} done'})
        self.assertEqual(self.client.generate_json('prompt'), {'entry_id': 'P300', 'confidence': 0.9})

        payload = self.session.post.call_args[1]['json']
        self.assertEqual(payload['format'], 'json')
        self.assertFalse(payload['stream'])

    def test_generate_json_without_object(self):
        self.session.post.return_value = _response(payload={'response': 'no idea'})
        with self.assertRaises(OllamaError):
            self.client.generate_json('prompt')

    def test_from_config(self):
        client = OllamaClient.from_config({'base_url': 'http://ollama:11434/', 'max_retries': 0, 'timeout': 5})
        self.assertEqual(client.base_url, 'http://ollama:11434')
        self.assertEqual(client.max_retries, 1, "At least one attempt is always made")
        self.assertEqual(client.timeout, 5)


class TestAIMatchArbiter(unittest.TestCase):
    """Test reply handling of the AI arbiter"""

    def setUp(self):
        self.client = mock.Mock()
        self.arbiter = AIMatchArbiter(self.client)
        self.candidates = [
            CatalogEntry(entry_id='P300', product_name='Brother TN660 High Yield Black Toner', brand='Brother'),
            CatalogEntry(entry_id='P301', product_name='Brother TN630 Black Toner', brand='Brother'),
        ]
        self.item = make_item(description='Brother TN660 toner refill')

    def test_choice_within_shortlist(self):
        self.client.generate_json.return_value = {'entry_id': 'P301', 'confidence': 1.4}
        entry, confidence = self.arbiter.choose(self.item, self.candidates)
        self.assertEqual(entry.entry_id, 'P301')
        self.assertEqual(confidence, 1.0, "Confidence is clamped to [0, 1]")

        prompt = self.client.generate_json.call_args[0][0]
        self.assertIn('id=P300', prompt)
        self.assertIn('Brother TN660 toner refill', prompt)

    def test_no_choice_and_unknown_id(self):
        self.client.generate_json.return_value = {'entry_id': None}
        self.assertIsNone(self.arbiter.choose(self.item, self.candidates))

        self.client.generate_json.return_value = {'entry_id': 'P999', 'confidence': 0.9}
        self.assertIsNone(self.arbiter.choose(self.item, self.candidates))

    def test_missing_confidence_uses_default(self):
        self.client.generate_json.return_value = {'entry_id': 'P300'}
        _, confidence = self.arbiter.choose(self.item, self.candidates)
        self.assertEqual(confidence, 0.80)


if __name__ == '__main__':
    unittest.main()
