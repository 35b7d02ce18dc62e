from grr.traffic import RevisionTarget, TrafficConfig, WeightedRollouts


def _tc(revision, percent=100, tag=""):
    return TrafficConfig(
        targets={tag: [RevisionTarget(configuration_name="hello", revision_name=revision, percent=percent, latest_revision=True)]}
    )


def test_build_only_tracks_latest_revision_targets():
    tc = TrafficConfig(
        targets={
            "": [
                RevisionTarget(configuration_name="hello", revision_name="hello-00002", percent=60, latest_revision=True),
                RevisionTarget(configuration_name="hello", revision_name="hello-00001", percent=40),
            ]
        }
    )
    ro = WeightedRollouts().build(tc)
    assert len(ro.configurations) == 1
    assert ro.configurations[0].percent == 60
    assert [r.revision_name for r in ro.configurations[0].revisions] == ["hello-00002"]


def test_step_without_prior_state_is_the_current_plan():
    algebra = WeightedRollouts(25)
    cur = algebra.build(_tc("hello-00001"))
    assert algebra.step(cur, None) == cur


def test_new_revision_ramps_one_step_per_pass():
    algebra = WeightedRollouts(25)
    prev = algebra.build(_tc("hello-00001"))
    cur = algebra.build(_tc("hello-00002"))

    first = algebra.step(cur, prev)
    revs = first.configurations[0].revisions
    assert [(r.revision_name, r.percent) for r in revs] == [("hello-00001", 75), ("hello-00002", 25)]

    second = algebra.step(cur, first)
    revs = second.configurations[0].revisions
    assert [(r.revision_name, r.percent) for r in revs] == [("hello-00001", 50), ("hello-00002", 50)]

    done = algebra.step(cur, algebra.step(cur, second))
    assert done == cur


def test_full_step_percent_is_immediate():
    algebra = WeightedRollouts(100)
    prev = algebra.build(_tc("hello-00001"))
    cur = algebra.build(_tc("hello-00002"))
    assert algebra.step(cur, prev) == cur


def test_tags_roll_independently():
    algebra = WeightedRollouts(50)
    prev = algebra.build(_tc("hello-00001", tag="beta"))
    cur = algebra.build(_tc("hello-00002"))
    # Different tag: nothing to ramp from.
    assert algebra.step(cur, prev) == cur
