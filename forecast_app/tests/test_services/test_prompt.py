from dataclasses import replace

from forecast_app.services.prompt import DEFAULT_TEMPLATE_PATH, FALLBACK_TEMPLATE, PromptBuilder


def test_build_fills_every_placeholder(tmp_path, snapshot):
    template = tmp_path / "prompt.txt"
    template.write_text(
        "{{City}}/{{Country}} {{Temp}}C {{Condition}} {{Humidity}}% {{Wind}}m/s AQI {{AQI}}",
        encoding="utf-8",
    )

    prompt = PromptBuilder(str(template)).build(snapshot)

    assert prompt == "Paris/FR 21C Clear 55% 3.4m/s AQI 2"


def test_number_formatting(tmp_path, snapshot):
    template = tmp_path / "prompt.txt"
    template.write_text("{{Temp}} {{Wind}}", encoding="utf-8")
    builder = PromptBuilder(str(template))

    assert builder.build(replace(snapshot, current_temp=-3.6, wind_speed=12)) == "-4 12.0"
    assert builder.build(replace(snapshot, current_temp=0.4, wind_speed=0.25)) == "0 0.2"


def test_missing_template_uses_builtin(tmp_path, snapshot):
    builder = PromptBuilder(str(tmp_path / "missing.txt"))

    prompt = builder.build(snapshot)

    assert builder.template == FALLBACK_TEMPLATE
    assert prompt.startswith("You are a weather advisor. Provide advice for Paris with 21°C.")


def test_template_loaded_once(tmp_path, snapshot):
    template = tmp_path / "prompt.txt"
    template.write_text("first {{City}}", encoding="utf-8")
    builder = PromptBuilder(str(template))

    assert builder.build(snapshot) == "first Paris"
    template.write_text("second {{City}}", encoding="utf-8")
    assert builder.build(snapshot) == "first Paris"


def test_packaged_template(snapshot):
    builder = PromptBuilder()

    prompt = builder.build(snapshot)

    assert builder.template_path == DEFAULT_TEMPLATE_PATH
    assert "Paris" in prompt
    assert "{{" not in prompt
