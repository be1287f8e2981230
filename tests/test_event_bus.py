from edufall.services.event_bus import EventBus, EventType


class TestEventBus:
    async def test_publish_builds_typed_message(self, bus, sink):
        await bus.publish("p1", EventType.SCORE_UPDATE, stats={"total_score": 100})

        assert sink.messages == [("p1", {"type": "score-update", "stats": {"total_score": 100}})]

    async def test_broadcast_reaches_each_player(self, bus, sink):
        await bus.broadcast(["p1", "p2"], EventType.RACE_COUNTDOWN, seconds=3)

        assert sink.last("p1", "race-countdown") == {"type": "race-countdown", "seconds": 3}
        assert sink.last("p2", "race-countdown") == {"type": "race-countdown", "seconds": 3}

    async def test_payload_may_name_a_player(self, bus, sink):
        await bus.publish("p1", EventType.TOURNAMENT_UPDATE, event="player-joined", player_id="p2")
        await bus.broadcast(["p1"], EventType.RACE_PROGRESS, player_id="p3", progress=2)

        assert sink.last("p1", "tournament-update")["player_id"] == "p2"
        assert sink.last("p1", "race-progress") == {"type": "race-progress", "player_id": "p3", "progress": 2}

    async def test_listeners_observe_messages(self, bus):
        seen = []

        async def listener(player_id, message):
            seen.append((player_id, message["type"]))

        bus.subscribe(listener)
        await bus.publish("p1", EventType.GAME_STARTED)
        bus.unsubscribe(listener)
        await bus.publish("p1", EventType.GAME_OVER)

        assert seen == [("p1", "game-started")]

    async def test_sink_errors_do_not_propagate(self, caplog):
        async def broken_sink(player_id, message):
            raise ConnectionError("socket closed")

        bus = EventBus(broken_sink)
        seen = []
        bus.subscribe(lambda pid, message: seen.append(message["type"]))

        await bus.publish("p1", EventType.QUESTION)

        assert seen == ["question"]
        assert "socket closed" in caplog.text

    async def test_listener_errors_do_not_stop_delivery(self, bus, sink):
        def broken(player_id, message):
            raise RuntimeError("listener bug")

        bus.subscribe(broken)
        await bus.broadcast(["p1", "p2"], EventType.RETURN_TO_LOBBY)

        assert sink.types("p1") == ["return-to-lobby"]
        assert sink.types("p2") == ["return-to-lobby"]

    def test_event_type_values_are_wire_names(self):
        assert EventType.TOURNAMENT_UPDATE.value == "tournament-update"
        assert EventType.ACHIEVEMENT_UNLOCKED.value == "achievement-unlocked"
        assert EventType("quick-match-queued") is EventType.QUICK_MATCH_QUEUED
