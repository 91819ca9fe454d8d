from __future__ import annotations

from pathlib import Path

import pytest

import codegen


def _make_file_result(filename: str, line_count: int) -> codegen.FileWriteResult:
    return codegen.FileWriteResult(
        filename=filename, path=Path("/tmp") / filename, line_count=line_count
    )


def _make_generation_summary(
    *,
    effects_output_dir: str | None = "winrt/lib/effects/generated",
    files: tuple[codegen.FileWriteResult, ...] = (),
) -> codegen.GenerationSummary:
    return codegen.GenerationSummary(
        input_dir="tools/codegen/exe",
        output_dir="winrt/lib",
        effects_output_dir=effects_output_dir,
        enums=12,
        structs=3,
        interfaces=1,
        effects_parsed=60,
        effects_emitted=55,
        shared_enums=4,
        native_matches=37,
        files=files,
    )


def test_t_01_format_generation_summary_full_report() -> None:
    summary = _make_generation_summary(
        files=(
            _make_file_result("Canvas.codegen.idl", 1234),
            _make_file_result("EffectMakers.cpp", 80),
        )
    )

    assert codegen.format_generation_summary(summary) == (
        "Projection sources generated:\n"
        "\n"
        "  Input:      tools/codegen/exe\n"
        "  Output:     winrt/lib\n"
        "  Effects:    winrt/lib/effects/generated\n"
        "\n"
        "  Types projected:\n"
        "    Enums:            12\n"
        "    Structs:           3\n"
        "    Interfaces:        1\n"
        "\n"
        "  Effects:\n"
        "    Emitted:          55  (of 60 parsed)\n"
        "    Shared enums:      4\n"
        "    Native enums:     37  matched\n"
        "\n"
        "  Files written:\n"
        "    Canvas.codegen.idl                    1,234 lines\n"
        "    EffectMakers.cpp                         80 lines\n"
        "\n"
        "  Total: 1,314 lines across 2 files\n"
    )


def test_t_02_format_generation_summary_omits_effects_rows_when_skipped() -> None:
    text = codegen.format_generation_summary(_make_generation_summary(effects_output_dir=None))

    assert "Effects" not in text
    assert "  Total: 0 lines across 0 files\n" in text


def test_t_03_format_generation_summary_ends_with_single_newline() -> None:
    text = codegen.format_generation_summary(_make_generation_summary())

    assert text.endswith("\n")
    assert not text.endswith("\n\n")


def test_t_04_print_generation_summary_writes_formatted_text(
    capsys: pytest.CaptureFixture[str],
) -> None:
    summary = _make_generation_summary(files=(_make_file_result("A.h", 3),))

    codegen.print_generation_summary(summary)

    assert capsys.readouterr().out == codegen.format_generation_summary(summary)


def test_t_05_build_generation_summary_counts_model_and_effects(
    generate_config: codegen.GenerateConfig,
    sample_settings: codegen.Settings,
    processed_effects: list[codegen.Effect],
) -> None:
    model = codegen.TypeModel(sample_settings)
    write_result = codegen.WriteResult(files=(_make_file_result("A.h", 3),))

    summary = codegen.build_generation_summary(
        generate_config, model, processed_effects, write_result
    )

    assert summary.effects_parsed == 4
    assert summary.effects_emitted == 3
    assert summary.shared_enums == 1
    assert summary.native_matches == 3
    assert summary.enums == summary.structs == summary.interfaces == 0
    assert summary.effects_output_dir == str(generate_config.effects_output_dir)
    assert summary.files == write_result.files
