"""Tests for error classification, loop detection and adaptive recovery."""

from unittest.mock import patch

import pytest

from luxloop.errors import (
    ERROR_PATTERNS,
    RECOVERY_STRATEGIES,
    ErrorCategory,
    ErrorClassifier,
    Severity,
    ToolFailure,
    match_category,
)


class TestPatternMatching:
    @pytest.mark.parametrize(
        ("message", "category"),
        [
            ("Parent not found: Workspace.Missing", ErrorCategory.PARENT_ERROR),
            ("Search content not found. Please verify", ErrorCategory.SEARCH_FAILED),
            ("Ambiguous match: Found 2 occurrences", ErrorCategory.AMBIGUOUS_MATCH),
            ("A child named 'Part' already exists in Workspace", ErrorCategory.ALREADY_EXISTS),
            ("Invalid class name: Prat", ErrorCategory.INVALID_CLASS),
            ("Unable to cast: expected number, got string", ErrorCategory.TYPE_ERROR),
            ("Property 'Name' is read-only", ErrorCategory.PROPERTY_ERROR),
            ("Instance not found: Workspace.Gone", ErrorCategory.MISSING_RESOURCE),
            ("syntax error near 'end'", ErrorCategory.SYNTAX_ERROR),
            ("Request timed out", ErrorCategory.RATE_LIMITED),
            ("User denied this operation", ErrorCategory.USER_DENIED),
        ],
    )
    def test_category(self, message, category):
        assert match_category(message).category is category

    def test_unknown_message(self):
        assert match_category("the moon is made of cheese") is None

    def test_every_pattern_has_suggestions(self):
        for pattern in ERROR_PATTERNS:
            assert 3 <= len(pattern.suggestions) <= 4

    def test_every_recoverable_category_has_strategies(self):
        for category in ErrorCategory:
            if category in (ErrorCategory.UNKNOWN, ErrorCategory.RATE_LIMITED,
                            ErrorCategory.INVALID_CLASS):
                continue
            assert RECOVERY_STRATEGIES[category]


class TestClassify:
    def test_structured_kind_skips_patterns(self):
        classifier = ErrorClassifier()

        result = classifier.classify("anything at all", "edit_script", kind=ErrorCategory.SYNTAX_ERROR)

        assert result.category is ErrorCategory.SYNTAX_ERROR
        assert result.severity is Severity.HIGH
        assert result.suggestions

    def test_unknown_kind_falls_back_to_patterns(self):
        result = ErrorClassifier().classify(
            "Script not found: Workspace.X", "get_script", kind=ErrorCategory.UNKNOWN
        )
        assert result.category is ErrorCategory.MISSING_RESOURCE

    def test_unmatched_is_unknown_medium(self):
        result = ErrorClassifier().classify("weird", "get_script")
        assert result.category is ErrorCategory.UNKNOWN
        assert result.severity is Severity.MEDIUM
        assert result.suggestions == ()

    def test_contextual_suggestion_for_patch(self):
        result = ErrorClassifier().classify(
            "Search content not found", "patch_script", {"path": "ServerScriptService.Main"}
        )
        assert result.top_suggestion == (
            "For ServerScriptService.Main, use get_script first to see the exact current content"
        )

    def test_contextual_suggestion_for_missing_parent(self):
        result = ErrorClassifier().classify(
            "Parent not found", "create_instance", {"parent": "Workspace.Map", "name": "Floor"}
        )
        assert "Workspace.Map" in result.top_suggestion

    def test_enhanced_message_lists_top_three(self):
        result = ErrorClassifier().classify("Instance not found: X", "get_instance")
        text = result.enhanced_message()
        assert text.startswith("[MISSING RESOURCE] Instance not found: X")
        assert "3. " in text
        assert "4. " not in text

    def test_tool_failure_carries_kind(self):
        failure = ToolFailure("nope", ErrorCategory.PARENT_ERROR, details={"hint": "x"})
        assert failure.kind is ErrorCategory.PARENT_ERROR
        assert failure.details == {"hint": "x"}
        assert str(failure) == "nope"


class TestLoopDetection:
    def test_same_category_three_times(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        for i in range(3):
            classifier.classify("Search content not found", f"patch_script_{i}")

        loop = classifier.detect_loop()

        assert loop is not None
        assert loop.category is ErrorCategory.SEARCH_FAILED
        assert loop.message.startswith("ERROR LOOP DETECTED: 3 'search_failed'")

    def test_same_tool_three_times(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        for message in ("Instance not found", "read-only", "already exists"):
            classifier.classify(message, "set_instance_properties")

        loop = classifier.detect_loop()

        assert loop.tool_name == "set_instance_properties"
        assert "TOOL LOOP DETECTED" in loop.message

    def test_scoped_to_current_task(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        for _ in range(2):
            classifier.classify("Search content not found", "patch_script")
        classifier.on_new_task("task-2")
        classifier.classify("Search content not found", "patch_script")

        assert classifier.detect_loop() is None

    def test_old_errors_ignored(self):
        classifier = ErrorClassifier(max_error_age_seconds=120)
        classifier.on_new_task("task-1")
        with patch("luxloop.errors.classifier.time.time", return_value=1000.0):
            for _ in range(3):
                classifier.classify("Search content not found", "patch_script")
        with patch("luxloop.errors.classifier.time.time", return_value=1200.0):
            assert classifier.detect_loop() is None
            classifier.prune_stale_errors()
        assert classifier.history == ()

    def test_preflight_warns_for_looping_tool(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        for _ in range(3):
            classifier.classify("Search content not found", "patch_script")

        assert classifier.preflight("patch_script").startswith("ERROR LOOP DETECTED")
        assert classifier.preflight("get_instance") is None


class TestAdaptiveRecovery:
    def test_offers_strategies(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        result = classifier.classify("Parent not found", "create_instance")

        plan = classifier.adaptive_recovery(result)

        assert plan.escalated is False
        assert plan.recommended.name == "verify_parent"

    def test_least_attempted_strategy_first(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        result = classifier.classify("Parent not found", "create_instance")
        classifier.record_recovery_attempt(ErrorCategory.PARENT_ERROR, "verify_parent")

        plan = classifier.adaptive_recovery(result)

        assert plan.recommended.name == "create_parent"

    def test_escalates_when_all_strategies_exhausted(self):
        classifier = ErrorClassifier(strategy_attempt_limit=2)
        classifier.on_new_task("task-1")
        result = classifier.classify("Ambiguous match", "patch_script")
        for strategy in RECOVERY_STRATEGIES[ErrorCategory.AMBIGUOUS_MATCH]:
            for _ in range(2):
                classifier.record_recovery_attempt(ErrorCategory.AMBIGUOUS_MATCH, strategy.name)

        plan = classifier.adaptive_recovery(result)

        assert plan.escalated is True
        assert plan.requires_user_input is True
        assert plan.message.startswith("ESCALATION: All 2 recovery strategies")
        assert classifier.recovery_exhausted() is True

    def test_loop_escalates(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        for _ in range(3):
            result = classifier.classify("Search content not found", "patch_script")

        plan = classifier.adaptive_recovery(result)

        assert plan.escalated is True
        assert plan.strategies == ()
        assert classifier.recovery_exhausted() is True

    def test_new_task_resets_attempts(self):
        classifier = ErrorClassifier(strategy_attempt_limit=1)
        classifier.on_new_task("task-1")
        classifier.classify("Ambiguous match", "patch_script")
        for strategy in RECOVERY_STRATEGIES[ErrorCategory.AMBIGUOUS_MATCH]:
            classifier.record_recovery_attempt(ErrorCategory.AMBIGUOUS_MATCH, strategy.name)
        assert classifier.recovery_exhausted()

        classifier.on_new_task("task-2")

        assert not classifier.recovery_exhausted()

    def test_format_for_llm_includes_recommendation(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        result = classifier.classify("Parent not found: Workspace.Map", "create_instance")

        text = classifier.format_for_llm(result, classifier.adaptive_recovery(result))

        assert text.startswith("[PARENT ERROR] Parent not found: Workspace.Map")
        assert "Recommended next step: Verify parent path structure (use list_children)" in text


class TestClassifierPersistence:
    def test_round_trip(self):
        classifier = ErrorClassifier()
        classifier.on_new_task("task-1")
        classifier.classify("Parent not found", "create_instance")

        restored = ErrorClassifier()
        restored.load_dict(classifier.to_dict())

        assert restored.task_id == "task-1"
        assert restored.statistics()["by_category"] == {"parent_error": 1}

    def test_clear_history(self):
        classifier = ErrorClassifier()
        classifier.classify("Parent not found", "create_instance")
        classifier.clear_history()
        assert classifier.statistics()["total_errors"] == 0
