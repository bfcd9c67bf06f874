import json
from datetime import datetime

from speech_coach.report import assemble_report, flatten_markdown, render_report_pdf


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

FINISH = '{"msg_type":"generate_answer_finish","data":""}'


def _data(event) -> str:
    return "data:" + json.dumps(event, ensure_ascii=False)


def _stream(*events, done: bool = True) -> str:
    lines = []
    for event in events:
        lines.append("event:conversation.message.delta")
        lines.append(_data(event))
        lines.append("")
    if done:
        lines.append("event:done")
        lines.append('data:"[DONE]"')
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# assemble_report
# ---------------------------------------------------------------------------

class TestAssembleReport:
    def test_replayed_message_is_deduplicated(self):
        full = "下载链接：https://x.test/r.pdf\n\n## 总体评价\n\n语速适中，逻辑清晰。\n\n"
        raw = _stream(
            {"content": full[:20]},
            {"content": full[20:]},
            {"content": full},
            {"content": FINISH},
        )
        report = assemble_report(raw)

        assert report.download_link == "https://x.test/r.pdf"
        assert report.analysis_content == "## 总体评价\n\n语速适中，逻辑清晰。"
        assert report.raw_analysis == full + full + FINISH
        assert report.original_content.count("语速适中，逻辑清晰。") == 2
        assert "generate_answer_finish" not in report.original_content

    def test_escaped_tool_output_wins_over_running_text(self):
        tool_output = json.dumps({"output": "下载链接：https://x.test/r.pdf\n\n语速偏快。"}, ensure_ascii=False)
        raw = _stream({"content": "正在分析视频……"}, {"content": tool_output})
        report = assemble_report(raw)

        assert report.download_link == "https://x.test/r.pdf"
        assert report.analysis_content == "语速偏快。"
        assert report.fallback_candidates

    def test_raw_body_order_decides_fallback(self):
        raw = _stream(
            {"content": '前缀 "output":"来自正文"'},
            {"output": "结构化结果"},
        )
        report = assemble_report(raw)

        assert report.fallback_candidates[0] == "来自正文"
        assert report.analysis_content == "来自正文"

    def test_structured_field_without_fallback_match(self):
        raw = _stream({"output": ["语速", "语调"]}, {"content": "忽略"})
        report = assemble_report(raw)
        assert report.fallback_candidates == []
        assert report.analysis_content == '["语速", "语调"]'

    def test_empty_stream(self):
        report = assemble_report("")
        assert report.download_link == ""
        assert report.analysis_content == ""
        assert report.raw_analysis == ""

    def test_to_response_shape(self):
        report = assemble_report(_stream({"content": "下载链接：https://x.test/r.pdf\n评价"}))
        response = report.to_response()
        assert response == {
            "content": "评价",
            "rawAnalysis": "下载链接：https://x.test/r.pdf\n评价",
            "originalContent": "下载链接：https://x.test/r.pdf\n评价",
            "downloadLink": "https://x.test/r.pdf",
            "structured": {"downloadLink": "https://x.test/r.pdf", "analysisContent": "评价"},
        }

    def test_debug_bundle_metrics(self):
        raw = _stream({"content": "评价内容"})
        report = assemble_report(raw)
        bundle = report.debug_bundle(raw)

        assert bundle["rawSse"] == raw
        assert bundle["extractedPayload"] == "评价内容"
        assert bundle["structured"] == {"downloadLink": "", "analysisContent": "评价内容"}
        assert bundle["metrics"]["rawLength"] == len(raw)
        assert bundle["metrics"]["contentLength"] == 4
        assert bundle["fallbackCandidates"] == 0


# ---------------------------------------------------------------------------
# PDF export
# ---------------------------------------------------------------------------

class TestPdfExport:
    def test_flatten_markdown(self):
        text = "## 标题\n**重点** 和 *强调*\n- 要点"
        assert flatten_markdown(text) == "标题\n重点 和 强调\n• 要点"

    def test_flatten_markdown_resolves_leftover_escapes(self):
        assert flatten_markdown('第一行\\n\\"引用\\"') == '第一行\n"引用"'

    def test_render_report_pdf(self):
        pdf = render_report_pdf(
            "## 总体评价\n\n语速适中，<逻辑> & 结构清晰。\n\n- 建议一",
            "https://x.test/r.pdf",
            generated_at=datetime(2026, 1, 2, 3, 4),
        )
        assert pdf.startswith(b"%PDF")
        assert len(pdf) > 1000

    def test_render_empty_report(self):
        assert render_report_pdf("").startswith(b"%PDF")
