from autobuild.services.clarification import (
    CONFIDENCE_THRESHOLD,
    clarification_confidence,
    detects_clarification_request,
    extract_core_question,
    extract_options,
    validate_response,
)


def test_detects_questions_addressed_to_the_user():
    message = "Which database would you like to use: SQLite or Postgres?"

    assert detects_clarification_request(message)
    assert clarification_confidence(message) >= CONFIDENCE_THRESHOLD


def test_progress_narration_is_not_a_question():
    assert not detects_clarification_request("Let me set up the routes next.")
    assert not detects_clarification_request("I'm now creating the components.")
    assert not detects_clarification_request("")
    assert clarification_confidence("Let me set up the routes next.") < CONFIDENCE_THRESHOLD


def test_extract_numbered_options():
    message = "Which framework?\n1. React\n2. Vue\n3. Svelte"

    assert extract_options(message) == ["React", "Vue", "Svelte"]


def test_extract_lettered_and_bulleted_options():
    assert extract_options("Styling?\na) Tailwind\nb) Plain CSS") == ["Tailwind", "Plain CSS"]
    assert extract_options("Continue?\n- Yes\n- No") == ["Yes", "No"]


def test_extract_inline_options():
    assert extract_options("Should I use React, Vue or Svelte?") == ["React", "Vue", "Svelte"]
    assert extract_options("Do you prefer SQLite or Postgres?") == ["SQLite", "Postgres"]
    assert extract_options("Is everything fine?") == []


def test_extract_core_question_picks_last_question():
    message = "I set up the project skeleton. Which database should I use?"

    assert extract_core_question(message) == "Which database should I use?"


def test_validate_response_matches_by_name_index_and_letter():
    options = ["SQLite", "Postgres"]

    assert validate_response("postgres", options).matched_option == "Postgres"
    assert validate_response("1", options).matched_option == "SQLite"
    assert validate_response("option 2", options).matched_option == "Postgres"
    assert validate_response("b", options).matched_option == "Postgres"
    assert validate_response("sql", options).matched_option == "SQLite"


def test_validate_response_accepts_custom_answers_but_not_empty_ones():
    custom = validate_response("MongoDB", ["SQLite", "Postgres"])
    assert custom.is_valid
    assert custom.matched_option is None
    assert custom.message

    assert not validate_response("   ", ["SQLite"]).is_valid
    assert validate_response("anything", None).is_valid
