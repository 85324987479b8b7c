from unittest.mock import MagicMock, patch

import config
import sales_ai

RECORDS = [{"id": "r1", "date": "2024-03-01", "crop_type": "Maize", "unit_type": "Kg",
            "units_sold": 10, "unit_price": 60, "total_sale": 600,
            "farmer_name": "Otieno", "farmer_phone": "+254712345678",
            "customer_name": "Akinyi", "customer_phone": "+254722000000"}]


def test_missing_key_returns_message_without_calling_gemini():
    with patch("sales_ai.genai") as genai:
        report = sales_ai.analyze_sales(RECORDS)
    assert report.startswith("API Key not configured")
    genai.GenerativeModel.assert_not_called()


def test_summarize_compacts_records():
    summary = sales_ai.summarize(RECORDS)
    assert summary == [{"date": "2024-03-01", "crop": "Maize", "qty": 10.0, "unit": "Kg", "price": 60.0,
                        "total": 600.0, "farmer": "Otieno (+254712345678)",
                        "customer": "Akinyi (+254722000000)"}]


def test_analyze_sales_calls_model(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "key")
    model = MagicMock()
    model.generate_content.return_value.text = "# Audit\nAll good"
    with patch("sales_ai.genai") as genai:
        genai.GenerativeModel.return_value = model
        report = sales_ai.analyze_sales(RECORDS)

    assert report == "# Audit\nAll good"
    genai.configure.assert_called_once_with(api_key="key")
    prompt = model.generate_content.call_args.args[0]
    assert "Otieno (+254712345678)" in prompt


def test_analyze_sales_reports_errors(monkeypatch):
    monkeypatch.setattr(config, "GOOGLE_API_KEY", "key")
    with patch("sales_ai.genai") as genai:
        genai.GenerativeModel.return_value.generate_content.side_effect = RuntimeError("quota")
        report = sales_ai.analyze_sales(RECORDS)
    assert report == "Error generating AI report: quota"
