import asyncio

import pytest

from conftest import CORRECT


@pytest.fixture
async def router(context):
    await context.router.handle_player_join("p1", "Ann")
    await context.router.handle_player_join("p2", "Bob")
    return context.router


class TestDispatch:
    async def test_join_sends_subjects_and_stats(self, router, sink):
        assert sink.last("p1", "subjects-available")["subjects"] == ["math"]
        stats = sink.last("p1", "player-stats")["stats"]
        assert stats["level"] == 1
        assert router.username("p1") == "Ann"

    async def test_unknown_messages_are_rejected(self, router):
        assert not await router.handle_message("p1", {"type": "fly"})
        assert not await router.handle_message("p1", {})
        assert not await router.handle_message("p1", "start-game")

    async def test_start_game_and_answer(self, router, context, sink):
        assert await router.handle_message("p1", {"type": "start-game", "subject": "math",
                                                  "difficulty": "hard"})
        assert sink.last("p1", "game-started")["difficulty"] == "hard"

        await context.scheduler.advance(1)
        await router.handle_message("p1", {"type": "answer-collision", "answer": CORRECT})
        assert sink.last("p1", "score-update")["stats"]["correct_count"] == 1

    async def test_busy_player_gets_error(self, router, sink):
        await router.handle_message("p1", {"type": "race-join"})
        await router.handle_message("p1", {"type": "start-game"})
        assert sink.last("p1", "error")["message"] == "Finish your current activity first."

    async def test_handler_failure_becomes_error(self, router, context, sink, monkeypatch):
        async def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(context.sessions, "start_game", explode)
        assert not await router.handle_message("p1", {"type": "start-game"})
        assert sink.last("p1", "error")["message"] == "Something went wrong. Please try again."

    async def test_slow_handler_times_out(self, router, context, sink, monkeypatch):
        async def stall(player_id):
            await asyncio.sleep(5)

        monkeypatch.setattr(context.sessions, "restart_game", stall)
        monkeypatch.setattr(router, "config", {"handler_timeout": 0.01})

        assert not await router.handle_message("p1", {"type": "restart-game"})
        assert sink.last("p1", "error")["message"] == "Request timed out. Please try again."

    async def test_leaderboard_and_stats(self, router, context, sink):
        context.leaderboard.submit("all-time", "p2", "Bob", 900)
        context.leaderboard.submit("all-time", "p1", "Ann", 400)

        await router.handle_message("p1", {"type": "get-leaderboard", "board": "all-time", "limit": 1})
        data = sink.last("p1", "leaderboard-data")
        assert [e["player_id"] for e in data["entries"]] == ["p2"]
        assert data["player_rank"] == 2

        await router.handle_message("p1", {"type": "get-stats"})
        stats = sink.last("p1", "player-stats")
        assert stats["leaderboards"]["all_time"]["rank"] == 2
        assert stats["achievements"]["unlocked"] == []


class TestTournamentMessages:
    async def test_invalid_settings(self, router, sink):
        await router.handle_message("p1", {"type": "create-tournament", "name": "Cup",
                                           "max_participants": "lots"})
        assert sink.last("p1", "tournament-error")["message"] == "Invalid tournament settings"

        await router.handle_message("p1", {"type": "create-tournament", "name": "Cup",
                                           "tournament_type": "knockout"})
        assert sink.last("p1", "tournament-error")["message"] == "Invalid tournament settings"

    async def test_rejected_config(self, router, sink):
        await router.handle_message("p1", {"type": "create-tournament", "name": "C"})
        assert sink.last("p1", "tournament-error")["message"] == "Failed to create tournament"

    async def test_create_list_and_join(self, router, context, sink):
        await router.handle_message("p1", {"type": "create-tournament", "name": "Friday Cup",
                                           "max_participants": 4, "questions_per_match": 1})
        tournament_id = sink.last("p1", "tournament-created")["tournament"]["id"]

        await router.handle_message("p2", {"type": "get-tournaments"})
        listing = sink.last("p2", "tournament-list")["tournaments"]
        assert [t["id"] for t in listing] == [tournament_id]

        await router.handle_message("p2", {"type": "join-tournament", "tournament_id": tournament_id})
        assert "p2" in context.tournaments.get_tournament(tournament_id).participants

        await router.handle_message("p2", {"type": "join-tournament", "tournament_id": "nope"})
        assert sink.last("p2", "tournament-error")["message"] == "Failed to join tournament"

    async def test_quick_match_flow(self, router, context, sink):
        await router.handle_message("p1", {"type": "join-quick-match", "player_count": 5})
        assert sink.last("p1", "tournament-error")["message"] == "Could not join quick match"

        await router.handle_message("p1", {"type": "join-quick-match", "questions": 1})
        await router.handle_message("p2", {"type": "join-quick-match", "questions": 1})
        await context.scheduler.advance(5)
        await router.handle_message("p2", {"type": "quick-match-answer", "answer": CORRECT})
        assert context.matchmaking.get_player_match("p2").get_player("p2").current_score == 150

    async def test_challenges_need_online_player(self, router, sink):
        await router.handle_message("p1", {"type": "create-challenge", "challenged_id": "p9"})
        assert sink.last("p1", "tournament-error")["message"] == "That player is not online"

    async def test_challenge_round_trip(self, router, sink):
        await router.handle_message("p1", {"type": "create-challenge", "challenged_id": "p2",
                                           "questions_per_match": 1})
        challenge = sink.last("p2", "challenge-received")["challenge"]
        assert challenge["challenger_username"] == "Ann"

        await router.handle_message("p2", {"type": "decline-challenge", "challenge_id": challenge["id"]})
        await router.handle_message("p2", {"type": "accept-challenge", "challenge_id": challenge["id"]})
        assert sink.last("p2", "tournament-error")["message"] == "Challenge is no longer available"


class TestLobbies:
    async def test_race_messages(self, router, context, sink):
        await router.handle_message("p1", {"type": "race-join"})
        await router.handle_message("p2", {"type": "race-join"})
        await router.handle_message("p2", {"type": "race-start"})
        assert sink.last("p2", "error")["message"] == "The race cannot start yet"

        await router.handle_message("p1", {"type": "race-start"})
        assert sink.last("p2", "race-countdown")["seconds"] == 3

    async def test_team_messages(self, router, context, sink):
        await router.handle_message("p1", {"type": "team-join-lobby"})
        await router.handle_message("p2", {"type": "team-join-lobby"})
        await router.handle_message("p1", {"type": "team-pick", "team_id": 0})
        await router.handle_message("p2", {"type": "team-pick", "team_id": 3})
        await router.handle_message("p1", {"type": "team-start"})
        assert sink.last("p2", "team-challenge-start")["team_name"] == "Green"


class TestLeave:
    async def test_leave_cleans_up_everything(self, router, context, store):
        await router.handle_message("p1", {"type": "join-quick-match"})
        await router.handle_player_leave("p1")

        assert not context.activity.is_busy("p1")
        assert context.persistence.get_player_data("p1") is None
        assert "p1" in store.profiles
        assert router.username("p1") == "p1"

    async def test_failing_step_does_not_stop_cleanup(self, router, context, monkeypatch):
        async def explode(player_id):
            raise RuntimeError("race state corrupt")

        monkeypatch.setattr(context.race, "handle_disconnect", explode)
        await router.handle_player_leave("p1")
        assert context.persistence.get_player_data("p1") is None

    async def test_leave_during_game_records_result(self, router, context):
        await router.handle_message("p1", {"type": "start-game"})
        await context.scheduler.advance(1)
        await router.handle_message("p1", {"type": "submit-answer", "answer": CORRECT})
        await router.handle_player_leave("p1")

        assert context.sessions.get_session("p1") is None
        assert context.leaderboard.get_player_rank("all-time", "p1") == 1


class TestFriends:
    async def test_request_accept_and_list(self, router, sink):
        await router.handle_message("p1", {"type": "send-friend-request", "target_username": "Bob"})
        assert sink.last("p1", "friend-request-sent")["success"] is True
        request = sink.last("p2", "friend-request-received")["request"]
        assert request["from_username"] == "Ann"

        await router.handle_message("p2", {"type": "request-friends-list"})
        assert [r["id"] for r in sink.last("p2", "friends-list")["requests"]] == [request["id"]]

        await router.handle_message("p2", {"type": "accept-friend-request", "request_id": request["id"]})
        assert sink.last("p2", "friend-request-accepted")["success"] is True
        friends = sink.last("p1", "friends-list")["friends"]
        assert [(f["username"], f["is_online"]) for f in friends] == [("Bob", True)]

    async def test_unknown_target_and_stale_request(self, router, sink):
        await router.handle_message("p1", {"type": "send-friend-request", "target_username": "Zed"})
        assert sink.last("p1", "friend-request-sent") == {
            "type": "friend-request-sent", "success": False, "target_username": "Zed",
        }

        await router.handle_message("p2", {"type": "accept-friend-request", "request_id": "req_x"})
        assert sink.last("p2", "friend-request-accepted")["success"] is False

    async def test_decline_remove_and_block(self, router, context, sink):
        await router.handle_message("p1", {"type": "send-friend-request", "target_username": "Bob"})
        request_id = sink.last("p2", "friend-request-received")["request"]["id"]
        await router.handle_message("p2", {"type": "decline-friend-request", "request_id": request_id})
        assert sink.last("p2", "friend-request-declined")["request_id"] == request_id
        assert context.social.get_pending_requests("p2") == []

        await router.handle_message("p2", {"type": "block-player", "blocked_id": "p1"})
        await router.handle_message("p1", {"type": "send-friend-request", "target_username": "Bob"})
        assert sink.last("p1", "friend-request-sent")["success"] is False

        await router.handle_message("p1", {"type": "remove-friend", "friend_id": "p2"})
        assert sink.last("p1", "friends-list")["friends"] == []

    async def test_leaving_marks_player_offline(self, router, context):
        await router.handle_player_leave("p2")
        assert not context.social.is_online("p2")
        assert context.social.is_online("p1")


class TestAdaptiveStart:
    async def test_start_game_with_adaptive_flag(self, router, context, sink):
        await router.handle_message("p1", {"type": "start-game", "adaptive": True})
        assert context.sessions.get_session("p1").adaptive
        assert sink.last("p1", "game-started")["is_adaptive"] is True
