"""Tests for the AI extraction collaborator.

Covers:
- Contracts: raw model output -> CandidateDocument (intent aliases, payload filtering)
- json_tools: fenced / chatty responses
- Router + provider factory: allowlists, key fallback
- Service: budget/retry with a patched provider, fallback to an unclear document
"""

import asyncio
import json
import os
import unittest
from unittest.mock import AsyncMock, patch

from orderflow.schemas.extraction import Intent, MediaPayload
from orderflow.services.ai.common.providers.base import BaseProvider

AUDIO = MediaPayload(data=b"\x1aE\xdf\xa3", mime_type="audio/webm")

ORDER_JSON = json.dumps(
    {
        "intent": "create_invoice",
        "transcription": "Anh Long lấy 5 lốc bia Tiger",
        "invoice_data": {
            "language": "vi-VN",
            "transcription": "Anh Long lấy 5 lốc bia Tiger",
            "customer_name": "Long",
            "extracted": [
                {"ten_hang_hoa": "Tiger", "don_vi_tinh": "lốc", "so_luong": 5, "don_gia": None, "vat": 0}
            ],
        },
        "product_data": None,
        "import_slip_data": None,
    },
    ensure_ascii=False,
)

# ─── Contract Tests ──────────────────────────────────


class ExtractionContractTests(unittest.TestCase):
    def test_invoice_alias_maps_to_order(self):
        from orderflow.services.ai.extraction.contracts import RawExtractionOutput

        doc = RawExtractionOutput.model_validate(json.loads(ORDER_JSON)).to_candidate_document()
        self.assertEqual(doc.intent, Intent.CREATE_ORDER)
        self.assertEqual(doc.counterparty_name, "Long")
        self.assertEqual(len(doc.lines), 1)
        line = doc.lines[0]
        self.assertEqual((line.item_name_text, line.unit_name_text, line.quantity), ("Tiger", "lốc", 5))
        self.assertIsNone(line.unit_price)
        self.assertEqual(line.vat_percent, 0)

    def test_unknown_intent_is_unclear(self):
        from orderflow.services.ai.extraction.contracts import RawExtractionOutput

        doc = RawExtractionOutput.model_validate({"intent": "delete_everything", "transcription": "?"}).to_candidate_document()
        self.assertEqual(doc.intent, Intent.UNCLEAR)
        self.assertEqual(doc.raw_text, "?")

    def test_only_matching_payload_is_kept(self):
        from orderflow.services.ai.extraction.contracts import RawExtractionOutput

        raw = {
            "intent": "create_product",
            "invoice_data": {"customer_name": "X", "extracted": [{"ten_hang_hoa": "Y"}]},
            "product_data": {
                "product_name": " Bia Tiger Crystal ",
                "brand_name": "Tiger",
                "catalog": "Bia",
                "attributes": [{"type": "Dung tích", "value": "330ml"}],
                "unit_conversions": [
                    {"name_unit": "Lon", "conversion_factor": 1, "unit_default": "Lon", "price": "12000", "vat": None}
                ],
            },
        }
        doc = RawExtractionOutput.model_validate(raw).to_candidate_document()
        self.assertEqual(doc.intent, Intent.CREATE_PRODUCT)
        self.assertEqual(doc.lines, ())
        self.assertEqual(doc.product.name, "Bia Tiger Crystal")
        self.assertEqual(doc.product.unit_conversions[0].price, 12000)
        self.assertIsNone(doc.product.unit_conversions[0].vat_percent)
        self.assertEqual(doc.product.attributes[0].type_name, "Dung tích")

    def test_import_slip_keeps_stated_price(self):
        from orderflow.services.ai.extraction.contracts import RawExtractionOutput

        raw = {
            "intent": "create_import_slip",
            "import_slip_data": {
                "supplier_name": "Tân Hiệp Phát",
                "extracted": [{"ten_hang_hoa": "Tiger", "don_vi_tinh": "", "so_luong": "abc", "don_gia": "140000"}],
            },
        }
        doc = RawExtractionOutput.model_validate(raw).to_candidate_document()
        self.assertEqual(doc.counterparty_name, "Tân Hiệp Phát")
        line = doc.lines[0]
        self.assertIsNone(line.quantity)
        self.assertIsNone(line.unit_name_text)
        self.assertEqual(line.unit_price, 140000)


# ─── JSON Tools ──────────────────────────────────────


class JsonToolsTests(unittest.TestCase):
    def test_fenced_json(self):
        from orderflow.services.ai.common.json_tools import extract_json_object

        self.assertEqual(extract_json_object('```json\n{"intent": "unclear"}\n```'), {"intent": "unclear"})

    def test_object_inside_chatter(self):
        from orderflow.services.ai.common.json_tools import extract_json_object

        text = 'Here you go: {"a": "{not a brace}", "b": {"c": 1}} hope this helps'
        self.assertEqual(extract_json_object(text), {"a": "{not a brace}", "b": {"c": 1}})

    def test_no_object(self):
        from orderflow.services.ai.common.json_tools import extract_json_object

        self.assertIsNone(extract_json_object(""))
        self.assertIsNone(extract_json_object("[1, 2, 3]"))
        self.assertIsNone(extract_json_object("{broken"))


# ─── Router / Providers ──────────────────────────────


class RouterTests(unittest.TestCase):
    @patch.dict(
        os.environ,
        {
            "AI_EXTRACTION_PROVIDER": "gemini",
            "AI_EXTRACTION_MODEL": "gemini-ultra",
            "AI_ALLOWED_PROVIDERS": "mock,gemini",
            "AI_ALLOWED_MODELS": "gemini:gemini-1.5-flash,gemini:gemini-1.5-pro",
            "GEMINI_API_KEY": "test-key",
            "ENABLE_AI_OVERRIDES": "false",
        },
        clear=False,
    )
    def test_model_outside_allowlist_falls_back_to_first(self):
        from orderflow.core.config import Settings
        from orderflow.services.ai.common.providers.gemini import GeminiProvider
        from orderflow.services.ai.common.router import resolve

        with (
            patch("orderflow.services.ai.common.router.get_settings") as mock_gs,
            patch("orderflow.services.ai.common.providers.get_settings") as mock_gs2,
        ):
            s = Settings()
            mock_gs.return_value = s
            mock_gs2.return_value = s

            config = resolve("extraction", override_provider="openai", override_model="gpt-4o")

        self.assertIsInstance(config.provider, GeminiProvider)
        self.assertEqual(config.model, "gemini-1.5-flash")

    @patch.dict(
        os.environ,
        {"AI_EXTRACTION_PROVIDER": "openai", "AI_ALLOWED_PROVIDERS": "mock,openai", "OPENAI_API_KEY": ""},
        clear=False,
    )
    def test_missing_key_falls_back_to_mock(self):
        from orderflow.core.config import Settings
        from orderflow.services.ai.common.providers.mock import MockProvider
        from orderflow.services.ai.common.router import resolve

        with (
            patch("orderflow.services.ai.common.router.get_settings") as mock_gs,
            patch("orderflow.services.ai.common.providers.get_settings") as mock_gs2,
        ):
            s = Settings()
            mock_gs.return_value = s
            mock_gs2.return_value = s

            config = resolve("extraction")

        self.assertIsInstance(config.provider, MockProvider)

    def test_openai_rejects_unsupported_audio(self):
        from orderflow.services.ai.common.providers.openai import OpenAIProvider

        with self.assertRaises(ValueError):
            asyncio.run(OpenAIProvider(api_key="k").generate("p", media=[AUDIO]))

    def test_openai_accepts_images_and_mp3_only(self):
        from orderflow.services.ai.common.providers.gemini import GeminiProvider
        from orderflow.services.ai.common.providers.openai import OpenAIProvider

        provider = OpenAIProvider(api_key="k")
        self.assertFalse(provider.accepts(AUDIO))
        self.assertTrue(provider.accepts(MediaPayload(data=b"x", mime_type="audio/mpeg")))
        self.assertTrue(provider.accepts(MediaPayload(data=b"x", mime_type="image/jpeg")))
        self.assertTrue(GeminiProvider(api_key="k").accepts(AUDIO))


# ─── Service Tests ───────────────────────────────────


class ExtractionServiceTests(unittest.TestCase):
    def _run(self, provider, env=None):
        from orderflow.core.config import Settings
        from orderflow.services.ai.extraction.service import extract_candidate_document

        environ = {
            "AI_EXTRACTION_PROVIDER": "mock",
            "AI_ALLOWED_PROVIDERS": "mock",
            "AI_EXTRACTION_MAX_RETRIES": "1",
            "AI_EXTRACTION_BUDGET_SECONDS": "8.0",
        }
        environ.update(env or {})
        with patch.dict(os.environ, environ, clear=False):
            s = Settings()
        patches = [
            patch("orderflow.services.ai.common.router.get_settings", return_value=s),
            patch("orderflow.services.ai.common.providers.get_settings", return_value=s),
            patch("orderflow.services.ai.extraction.service.get_settings", return_value=s),
        ]
        if provider is not None:
            patches.append(patch("orderflow.services.ai.common.router.get_provider", return_value=provider))
        for p in patches:
            p.start()
        try:
            return asyncio.run(extract_candidate_document(AUDIO, intent_hint=Intent.CREATE_ORDER))
        finally:
            for p in reversed(patches):
                p.stop()

    def test_mock_provider_yields_unclear(self):
        result = self._run(None)
        self.assertEqual(result.document.intent, Intent.UNCLEAR)
        self.assertEqual(result.provider_result.provider, "mock")
        self.assertEqual(result.attempts, 1)
        self.assertFalse(result.fallback)

    def test_patched_response_is_parsed(self):
        from orderflow.services.ai.common.providers.base import ProviderResult

        provider = AsyncMock(spec=BaseProvider)
        provider.name = "mock"
        provider.generate.return_value = ProviderResult(
            raw_text=f"```json\n{ORDER_JSON}\n```", model="test-model", provider="mock"
        )

        result = self._run(provider)

        self.assertEqual(result.document.intent, Intent.CREATE_ORDER)
        self.assertEqual(result.document.lines[0].item_name_text, "Tiger")
        prompt = provider.generate.call_args.args[0]
        self.assertIn("create_invoice", prompt)
        self.assertEqual(provider.generate.call_args.kwargs["media"], [AUDIO])

    def test_retries_then_falls_back(self):
        provider = AsyncMock(spec=BaseProvider)
        provider.generate.side_effect = RuntimeError("provider down")

        result = self._run(provider)

        self.assertTrue(result.fallback)
        self.assertEqual(result.attempts, 2)
        self.assertEqual(result.document.intent, Intent.UNCLEAR)
        self.assertEqual(provider.generate.await_count, 2)

    def test_unparseable_response_is_retried(self):
        from orderflow.services.ai.common.providers.base import ProviderResult

        provider = AsyncMock(spec=BaseProvider)
        provider.generate.side_effect = [
            ProviderResult(raw_text="sorry, I cannot", model="m", provider="mock"),
            ProviderResult(raw_text=ORDER_JSON, model="m", provider="mock"),
        ]

        result = self._run(provider)

        self.assertFalse(result.fallback)
        self.assertEqual(result.attempts, 2)
        self.assertEqual(result.document.intent, Intent.CREATE_ORDER)

    def test_unsupported_media_skips_the_provider(self):
        provider = AsyncMock(spec=BaseProvider)
        provider.name = "openai"
        provider.accepts.return_value = False

        result = self._run(provider)

        self.assertTrue(result.fallback)
        self.assertEqual(result.attempts, 0)
        self.assertEqual(result.document.intent, Intent.UNCLEAR)
        provider.accepts.assert_called_once_with(AUDIO)
        provider.generate.assert_not_awaited()
