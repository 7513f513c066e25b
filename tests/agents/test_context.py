# tests/agents/test_context.py
# =============================================================================
# 提示词上下文构建测试 / Prompt context builder tests
# =============================================================================

from readerpanel.agents.context import (
    build_analysis_prompt,
    build_discussion_system_prompt,
    build_reader_system_prompt,
    memory_block,
    render_perspective,
    render_statements,
    render_transcript,
)
from readerpanel.primitives.models import (
    CoverageReport,
    Document,
    DocumentMetadata,
    FocusGroupMessage,
)


def _msg(seq, speaker_type, speaker, content, **kwargs):
    return FocusGroupMessage(sequence=seq, speaker_type=speaker_type, speaker=speaker,
                             content=content, **kwargs)


class TestReaderPrompts:
    def test_system_prompt_ordering(self, personas):
        prompt = build_reader_system_prompt(personas["reader-maya"], "CALIBRATION", "MEMORY")
        persona_at = prompt.index("You are Maya Chen")
        calibration_at = prompt.index("CALIBRATION")
        memory_at = prompt.index("YOUR PRIOR CONTEXT WITH THIS PROJECT:\nMEMORY")
        assert persona_at < calibration_at < memory_at < prompt.index("OUTPUT FORMAT")

    def test_system_prompt_without_optional_sections(self, personas):
        prompt = build_reader_system_prompt(personas["reader-maya"])
        assert "YOUR PRIOR CONTEXT" not in prompt

    def test_analysis_prompt_header(self):
        document = Document(text="FADE IN:", metadata=DocumentMetadata(title="Drift"))
        prompt = build_analysis_prompt(document)
        assert "TITLE: Drift\nAUTHOR: Unknown" in prompt
        assert "PAGES: unknown" in prompt
        assert "SCRIPT:\nFADE IN:" in prompt

    def test_discussion_prompt_has_coverage_not_text(self, personas):
        coverage = CoverageReport(metadata=DocumentMetadata(title="Drift"), harmonized={},
                                  recommendation="consider", logline="A sailor drifts.")
        prompt = build_discussion_system_prompt(personas["reader-devon"], coverage, ["EXTRA", ""])
        assert 'Title: "Drift" by Unknown' in prompt
        assert "Logline: A sailor drifts." in prompt
        assert prompt.endswith("\n\nEXTRA")


class TestRendering:
    def test_perspective(self, make_result):
        text = render_perspective(make_result("a", overall=68))
        assert "- Your overall score: good (68/100)" in text
        assert render_perspective(None) == "No perspective data available."

    def test_transcript_window(self):
        messages = [_msg(i, "reader", f"R{i}", f"line {i}") for i in range(8)]
        messages.insert(0, _msg(99, "moderator", "Scout", "Welcome."))
        text = render_transcript(messages, window=2)
        assert text == "R6: line 6\n\nR7: line 7"
        assert render_transcript(messages[:1]) == "Scout (Moderator): Welcome."
        assert render_transcript([]) == "(The discussion is just starting.)"

    def test_user_label(self):
        assert render_transcript([_msg(0, "user", "anon", "Hi")]) == "User: Hi"

    def test_statements_name_reaction_target(self):
        reaction = _msg(3, "reader", "Devon Park", "Not for me.", analyst_id="reader-devon",
                        reply_to_sequence=1, reply_to_analyst_id="reader-maya",
                        reaction="disagrees")
        assert render_statements([reaction], {"reader-maya": "Maya Chen"}) == \
            'Devon Park (disagrees with Maya Chen): "Not for me."'
        assert render_statements([reaction]) == \
            'Devon Park (disagrees with reader-maya): "Not for me."'

    def test_memory_block(self):
        assert memory_block("") == ""
        assert memory_block("MEM") == "MEM\n\n"
