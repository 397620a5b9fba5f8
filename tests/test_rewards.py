import pytest

import rewards
from errors import NotFound, ValidationError
from tests.conftest import auth_header


def test_tip_adds_to_collector_totals(db, resident, collector):
    rid, cid = resident["user"]["id"], collector["user"]["id"]
    before = rewards.collector_tip_summary(db, cid)

    tip = rewards.send_tip(db, rid, cid, 50)

    after = rewards.collector_tip_summary(db, cid)
    assert after["totalTips"] - before["totalTips"] == 50
    assert after["transactionCount"] - before["transactionCount"] == 1
    assert tip["house"] == resident["user"]["house"]["id"]


@pytest.mark.parametrize("amount", [0, -5, 2.5, "50", True])
def test_tip_amount_must_be_positive_int(db, resident, collector, amount):
    with pytest.raises(ValidationError):
        rewards.send_tip(db, resident["user"]["id"], collector["user"]["id"], amount)
    assert db["tip"].count_documents({}) == 0


def test_tip_roles_are_checked(db, resident, collector):
    with pytest.raises(NotFound):
        rewards.send_tip(db, collector["user"]["id"], resident["user"]["id"], 10)


def test_duplicate_tips_are_separate_records(db, resident, collector):
    rid, cid = resident["user"]["id"], collector["user"]["id"]
    rewards.send_tip(db, rid, cid, 20)
    rewards.send_tip(db, rid, cid, 20)
    assert rewards.collector_tip_summary(db, cid) == {
        "collectorId": cid,
        "totalTips": 40,
        "transactionCount": 2,
        "averageTip": 20.0,
    }


def test_empty_summaries(db, collector):
    cid = collector["user"]["id"]
    assert rewards.collector_tip_summary(db, cid)["averageTip"] == 0.0
    assert rewards.collector_feedback_summary(db, cid)["averageRating"] == 0.0


def test_tip_analytics(db, resident, make_user):
    rid = resident["user"]["id"]
    c1 = make_user("collector")["user"]["id"]
    c2 = make_user("collector")["user"]["id"]
    for cid, amount in [(c1, 10), (c1, 40), (c2, 100)]:
        rewards.send_tip(db, rid, cid, amount)

    analytics = rewards.tip_analytics(db)
    assert analytics["totalTips"] == 150
    assert analytics["totalTransactions"] == 3
    assert analytics["averageTip"] == 50
    assert [c["collectorId"] for c in analytics["collectors"]] == [c2, c1]
    assert analytics["distribution"] == {"small": 1, "medium": 1, "large": 1}


def test_first_feedback_average(db, resident, collector, make_user):
    other = make_user("collector")["user"]["id"]
    rewards.submit_feedback(db, resident["user"]["id"], other, 2)

    rewards.submit_feedback(db, resident["user"]["id"], collector["user"]["id"], 5, "Always on time")

    summary = rewards.collector_feedback_summary(db, collector["user"]["id"])
    assert summary["averageRating"] == 5.0
    assert summary["feedbackCount"] == 1


@pytest.mark.parametrize("rating", [0, 6, 4.5, None])
def test_rating_range(db, resident, collector, rating):
    with pytest.raises(ValidationError):
        rewards.submit_feedback(db, resident["user"]["id"], collector["user"]["id"], rating)


def test_feedback_analytics(db, resident, collector):
    for rating in (5, 4, 4):
        rewards.submit_feedback(db, resident["user"]["id"], collector["user"]["id"], rating)

    analytics = rewards.feedback_analytics(db)
    assert analytics["totalFeedback"] == 3
    assert analytics["averageRating"] == pytest.approx(13 / 3)
    assert analytics["ratingDistribution"] == {"5": 1, "4": 2, "3": 0, "2": 0, "1": 0}


def test_tip_and_feedback_endpoints(client, resident, collector):
    rid, cid = resident["user"]["id"], collector["user"]["id"]
    headers = auth_header(resident)
    res = client.post("/api/tips", json={"fromResidentId": rid, "toCollectorId": cid, "amount": 50}, headers=headers)
    assert res.status_code == 201
    assert res.json()["tip"]["amount"] == 50
    assert res.json()["tip"]["fromResidentId"] == rid

    res = client.post("/api/tips", json={"toCollectorId": cid, "amount": 0}, headers=headers)
    assert res.status_code == 400

    summary = client.get(f"/api/tips/collector/{cid}/summary").json()
    assert summary["totalTips"] == 50
    assert len(client.get(f"/api/tips/collector/{cid}").json()) == 1

    res = client.post("/api/feedback", json={"collectorId": cid, "rating": 5}, headers=headers)
    assert res.status_code == 201
    res = client.post("/api/feedback", json={"residentId": rid, "collectorId": cid, "rating": 9}, headers=headers)
    assert res.status_code == 400

    assert client.get(f"/api/feedback/collector/{cid}/summary").json()["averageRating"] == 5.0
    assert client.get("/api/feedback/analytics").json()["totalFeedback"] == 1
    assert client.get("/api/tips/analytics").json()["totalTransactions"] == 1


def test_tips_and_feedback_are_sent_as_the_caller(client, db, resident, collector, make_user):
    rid, cid = resident["user"]["id"], collector["user"]["id"]
    other = make_user("resident")
    tip = {"fromResidentId": rid, "toCollectorId": cid, "amount": 50}
    feedback = {"residentId": rid, "collectorId": cid, "rating": 1}

    assert client.post("/api/tips", json=tip).status_code == 401
    assert client.post("/api/tips", json=tip, headers=auth_header(other)).status_code == 403
    assert client.post("/api/tips", json=tip, headers=auth_header(collector)).status_code == 403
    assert client.post("/api/feedback", json=feedback).status_code == 401
    assert client.post("/api/feedback", json=feedback, headers=auth_header(other)).status_code == 403

    assert db["tip"].count_documents({}) == 0
    assert db["feedback"].count_documents({}) == 0
