"""
Tests for POST /api/tweets, GET /api/tweets and GET /api/tweets/search.

Tests cover:
- Tweet creation and id lookup
- Unknown author (400)
- Listing order and username join
- Substring search over content and username
"""

from datetime import datetime

import pytest


def register_user(client, username: str) -> int:
    """Helper to register a user and return its id."""
    response = client.post(
        "/api/register",
        json={"username": username, "email": f"{username}@example.com", "password": "secret123"},
    )
    assert response.status_code == 201
    return response.json()["userId"]


def post_tweet(client, user_id: int, content: str) -> int:
    """Helper to create a tweet and return its id."""
    response = client.post("/api/tweets", json={"userId": user_id, "content": content})
    assert response.status_code == 201
    return response.json()["tweetId"]


@pytest.fixture
def seeded_client(client):
    """Client with two users and a handful of tweets."""
    alice = register_user(client, "alice")
    bob = register_user(client, "BobTheBuilder")

    ids = {
        "a1": post_tweet(client, alice, "Hello world"),
        "b1": post_tweet(client, bob, "Can we fix it?"),
        "a2": post_tweet(client, alice, "Coffee first"),
        "b2": post_tweet(client, bob, "Yes we can"),
    }
    client.seed = {"alice": alice, "bob": bob, "tweets": ids}
    return client


class TestCreateTweet:
    """Test tweet creation."""

    def test_create_tweet_success(self, client):
        user_id = register_user(client, "alice")

        response = client.post("/api/tweets", json={"userId": user_id, "content": "first!"})

        assert response.status_code == 201
        data = response.json()
        assert data["message"] == "Tweet created successfully"
        assert isinstance(data["tweetId"], int)

    def test_created_tweet_matches_submission(self, client):
        user_id = register_user(client, "alice")
        tweet_id = post_tweet(client, user_id, "exactly this text")

        tweets = client.get("/api/tweets").json()
        stored = next(t for t in tweets if t["id"] == tweet_id)

        assert stored["content"] == "exactly this text"
        assert stored["user_id"] == user_id
        assert stored["username"] == "alice"

    def test_unknown_user_rejected(self, client):
        response = client.post("/api/tweets", json={"userId": 9999, "content": "orphan"})

        assert response.status_code == 400
        assert response.json() == {"error": "User does not exist"}
        assert client.get("/api/tweets").json() == []

    def test_oversized_user_id_is_validation_error(self, client):
        response = client.post("/api/tweets", json={"userId": 2**70, "content": "too big"})

        assert response.status_code == 422
        assert response.json()["error"] == "Invalid request"

    def test_missing_content_is_validation_error(self, client):
        user_id = register_user(client, "alice")

        response = client.post("/api/tweets", json={"userId": user_id})

        assert response.status_code == 422


class TestListTweets:
    """Test the timeline listing."""

    def test_empty(self, client):
        response = client.get("/api/tweets")

        assert response.status_code == 200
        assert response.json() == []

    def test_lists_all_with_usernames(self, seeded_client):
        response = seeded_client.get("/api/tweets")

        assert response.status_code == 200
        tweets = response.json()
        assert len(tweets) == 4

        authors = {t["id"]: t["username"] for t in tweets}
        ids = seeded_client.seed["tweets"]
        assert authors[ids["a1"]] == "alice"
        assert authors[ids["b1"]] == "BobTheBuilder"

    def test_fields(self, seeded_client):
        tweet = seeded_client.get("/api/tweets").json()[0]

        assert set(tweet) == {"id", "user_id", "content", "created_at", "username"}

    def test_ordered_most_recent_first(self, seeded_client):
        tweets = seeded_client.get("/api/tweets").json()

        timestamps = [datetime.fromisoformat(t["created_at"]) for t in tweets]
        assert timestamps == sorted(timestamps, reverse=True)
        # same-second inserts fall back to id order
        assert tweets[0]["id"] == seeded_client.seed["tweets"]["b2"]

    def test_new_tweets_added_to_prior(self, seeded_client):
        alice = seeded_client.seed["alice"]
        for i in range(3):
            post_tweet(seeded_client, alice, f"more {i}")

        assert len(seeded_client.get("/api/tweets").json()) == 7


class TestSearchTweets:
    """Test substring search over content and username."""

    def test_content_match(self, seeded_client):
        response = seeded_client.get("/api/tweets/search", params={"query": "coffee"})

        assert response.status_code == 200
        results = response.json()
        assert [t["id"] for t in results] == [seeded_client.seed["tweets"]["a2"]]

    def test_username_match_returns_all_by_user(self, seeded_client):
        results = seeded_client.get("/api/tweets/search", params={"query": "bobthe"}).json()

        ids = seeded_client.seed["tweets"]
        assert {t["id"] for t in results} == {ids["b1"], ids["b2"]}
        assert all(t["username"] == "BobTheBuilder" for t in results)

    def test_case_insensitive(self, seeded_client):
        results = seeded_client.get("/api/tweets/search", params={"query": "HELLO"}).json()

        assert [t["content"] for t in results] == ["Hello world"]

    def test_empty_query_returns_everything(self, seeded_client):
        results = seeded_client.get("/api/tweets/search", params={"query": ""}).json()

        assert len(results) == 4

    def test_absent_query_returns_everything(self, seeded_client):
        results = seeded_client.get("/api/tweets/search").json()

        assert len(results) == 4

    def test_no_match(self, seeded_client):
        results = seeded_client.get("/api/tweets/search", params={"query": "zebra"}).json()

        assert results == []

    def test_results_ordered_most_recent_first(self, seeded_client):
        results = seeded_client.get("/api/tweets/search", params={"query": "we"}).json()

        ids = seeded_client.seed["tweets"]
        assert [t["id"] for t in results] == [ids["b2"], ids["b1"]]
