from edufall.services.activity_registry import ActivityKind, PlayerActivityRegistry


class TestPlayerActivityRegistry:
    def test_claim_marks_player_busy(self):
        registry = PlayerActivityRegistry()

        assert registry.claim("p1", ActivityKind.QUEUE, "math|moderate|2")
        assert registry.is_busy("p1")
        assert registry.current("p1").kind == ActivityKind.QUEUE
        assert registry.current("p1").ref == "math|moderate|2"

    def test_second_activity_is_refused(self):
        registry = PlayerActivityRegistry()
        registry.claim("p1", ActivityKind.SESSION, "p1")

        assert not registry.claim("p1", ActivityKind.TOURNAMENT, "t_1")
        assert not registry.claim("p1", ActivityKind.QUEUE, "math|moderate|2")
        assert registry.current("p1").kind == ActivityKind.SESSION

    def test_reclaiming_same_activity_is_idempotent(self):
        registry = PlayerActivityRegistry()
        registry.claim("p1", ActivityKind.TOURNAMENT, "t_1")

        assert registry.claim("p1", ActivityKind.TOURNAMENT, "t_1")
        assert len(registry) == 1

    def test_transfer_moves_without_gap(self):
        registry = PlayerActivityRegistry()
        registry.claim("p1", ActivityKind.QUEUE, "key")

        assert registry.transfer("p1", ActivityKind.QUEUE, ActivityKind.QUICK_MATCH, "qm_1")
        assert registry.current("p1").kind == ActivityKind.QUICK_MATCH
        assert registry.current("p1").ref == "qm_1"

    def test_transfer_requires_matching_kind(self):
        registry = PlayerActivityRegistry()
        registry.claim("p1", ActivityKind.RACE_LOBBY, "race_lobby")

        assert not registry.transfer("p1", ActivityKind.QUEUE, ActivityKind.QUICK_MATCH, "qm_1")
        assert not registry.transfer("p2", ActivityKind.QUEUE, ActivityKind.QUICK_MATCH, "qm_1")

    def test_release_respects_filters(self):
        registry = PlayerActivityRegistry()
        registry.claim("p1", ActivityKind.TOURNAMENT, "t_1")

        assert not registry.release("p1", ActivityKind.QUEUE)
        assert not registry.release("p1", ActivityKind.TOURNAMENT, "t_2")
        assert registry.is_busy("p1")

        assert registry.release("p1", ActivityKind.TOURNAMENT, "t_1")
        assert not registry.is_busy("p1")
        assert not registry.release("p1")

    def test_players_in(self):
        registry = PlayerActivityRegistry()
        registry.claim("p1", ActivityKind.RACE, "race_a")
        registry.claim("p2", ActivityKind.RACE, "race_b")
        registry.claim("p3", ActivityKind.SESSION, "p3")

        assert sorted(registry.players_in(ActivityKind.RACE)) == ["p1", "p2"]
        assert registry.players_in(ActivityKind.RACE, "race_b") == ["p2"]
