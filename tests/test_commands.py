"""Tests for workflow commands in step output."""

from localci.commands import CommandProcessor, parse_properties


class TestParseProperties:
    """Tests for command property parsing."""

    def test_empty(self) -> None:
        assert parse_properties(None) == {}
        assert parse_properties("") == {}

    def test_pairs_and_escapes(self) -> None:
        """Test escaped separators inside property values."""
        assert parse_properties("name=a%2Cb,title=x%3Ay") == {"name": "a,b", "title": "x:y"}

    def test_pairs_without_value_are_dropped(self) -> None:
        assert parse_properties("name=x,junk") == {"name": "x"}


class TestCommandProcessor:
    """Tests for interpreting '::command::' lines."""

    def test_no_output(self) -> None:
        result = CommandProcessor().process(None)
        assert result.outputs == {}
        assert result.messages == []

    def test_plain_output_is_ignored(self) -> None:
        result = CommandProcessor().process("building...\ndone: 3 files\n")
        assert result.outputs == {}
        assert result.messages == []

    def test_set_output_and_save_state(self) -> None:
        """Test values reach the outputs and state maps."""
        output = "::set-output name=version::1.2.3\n::save-state name=pid::42\n"
        result = CommandProcessor().process(output)

        assert result.outputs == {"version": "1.2.3"}
        assert result.state == {"pid": "42"}

    def test_data_escapes(self) -> None:
        """Test newline and percent escapes in command data."""
        result = CommandProcessor().process("::set-output name=text::a%0Ab%25\n")
        assert result.outputs == {"text": "a\nb%"}

    def test_messages_keep_output_order(self) -> None:
        """Test annotations and groups are collected in order."""
        output = "\n".join(
            [
                "::group::Install",
                "::debug::resolving",
                "::notice title=Heads up::fyi",
                "::warning file=a.py,line=1::careful",
                "::error::broken",
            ]
        )
        result = CommandProcessor().process(output)

        assert result.messages == [
            ("group", "Install"),
            ("debug", "resolving"),
            ("notice", "fyi"),
            ("warning", "careful"),
            ("error", "broken"),
        ]

    def test_add_mask(self) -> None:
        result = CommandProcessor().process("::add-mask::hunter2\n::add-mask::\n")
        assert result.masks == {"hunter2"}

    def test_stop_commands_until_token(self) -> None:
        """Test commands between stop-commands and the resume token are ignored."""
        output = "\n".join(
            [
                "::stop-commands::pause-token",
                "::set-output name=ignored::1",
                "::pause-token::",
                "::set-output name=kept::2",
            ]
        )
        result = CommandProcessor().process(output)

        assert result.outputs == {"kept": "2"}

    def test_unsecure_commands_disabled_by_default(self) -> None:
        """Test set-env and add-path are reported, not applied."""
        result = CommandProcessor().process("::set-env name=X::1\n::add-path::/opt/bin\n")

        assert result.env == {}
        assert result.path == []
        assert result.ignored == ["set-env", "add-path"]

    def test_unsecure_commands_when_allowed(self) -> None:
        result = CommandProcessor(allow_unsecure_commands=True).process(
            "::set-env name=X::1\n::add-path::/opt/bin\n"
        )

        assert result.env == {"X": "1"}
        assert result.path == ["/opt/bin"]
        assert result.ignored == []

    def test_unknown_commands_are_ignored(self) -> None:
        result = CommandProcessor().process("::endgroup::\n::whatever::x\n")
        assert result.messages == []
        assert result.ignored == []
