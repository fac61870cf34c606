from streamclips.jobs import ProgressHub


def test_publish_reaches_every_subscriber():
    hub = ProgressHub()
    a = hub.subscribe("job1")
    b = hub.subscribe("job1")
    other = hub.subscribe("job2")

    assert hub.publish("job1", {"progress": 10}) == 2
    assert a.get(timeout=0.1) == {"progress": 10}
    assert b.get(timeout=0.1) == {"progress": 10}
    assert other.get(timeout=0.01) is None


def test_publish_without_subscribers_is_a_noop():
    assert ProgressHub().publish("nobody", {"progress": 1}) == 0


def test_full_queue_drops_instead_of_blocking():
    hub = ProgressHub(queue_size=2)
    sub = hub.subscribe("job1")
    for pct in range(5):
        hub.publish("job1", {"progress": pct})

    assert [p["progress"] for p in sub.drain()] == [0, 1]
    assert sub.dropped == 3
    # room again after draining
    assert hub.publish("job1", {"progress": 99}) == 1


def test_closed_subscription_is_pruned():
    hub = ProgressHub()
    with hub.subscribe("job1") as sub:
        assert hub.subscriber_count("job1") == 1
    assert sub.closed
    assert hub.subscriber_count("job1") == 0
    assert hub.publish("job1", {"progress": 5}) == 0
    assert sub.drain() == []


def test_iterating_stops_after_close():
    hub = ProgressHub()
    sub = hub.subscribe("job1")
    hub.publish("job1", {"progress": 1})
    hub.publish("job1", {"progress": 2})

    seen = []
    for item in sub:
        seen.append(item["progress"])
        if len(seen) == 2:
            sub.close()
    assert seen == [1, 2]
