"""Tests for pod and network-plugin classification."""

from cluster_healer.health import classify_cni, classify_pod, classify_pods, find_stuck_pods
from cluster_healer.health.classifiers import is_stuck_by_container_status, is_stuck_by_readiness
from cluster_healer.models import CniState, PodCategory
from conftest import make_pod

PATTERNS = ["calico", "flannel", "weave", "cilium"]


def _sample_pods():
    return [
        make_pod("healthy"),
        make_pod("terminating", terminating=True),
        make_pod("terminating-failed", phase="Failed", terminating=True),
        make_pod("terminating-lost", terminating=True, container_reasons=["ContainerStatusUnknown"]),
        make_pod("failed", phase="Failed", ready="False"),
        make_pod("error", phase="Error"),
        make_pod("unknown-phase", phase="Unknown", ready=None),
        make_pod("lost", container_reasons=["ContainerStatusUnknown"]),
        make_pod("node-lost", container_reasons=["NodeLost"]),
        make_pod("not-ready", ready="False"),
    ]


class TestPodClassification:
    """Tests for disjoint pod categories."""

    def test_categories_are_disjoint_and_complete(self):
        pods = _sample_pods()
        buckets = classify_pods(pods)

        names = [p.name for bucket in buckets.values() for p in bucket]
        assert sorted(names) == sorted(p.name for p in pods)
        assert len(names) == len(set(names))

    def test_terminating_pods_appear_only_as_terminating(self):
        buckets = classify_pods(_sample_pods(), readiness_counts=True)

        terminating = {p.name for p in buckets[PodCategory.TERMINATING]}
        assert terminating == {"terminating", "terminating-failed", "terminating-lost"}
        for category in (PodCategory.ERROR, PodCategory.STUCK, PodCategory.HEALTHY):
            assert not terminating & {p.name for p in buckets[category]}

    def test_error_phases(self):
        assert classify_pod(make_pod("a", phase="Failed")) == PodCategory.ERROR
        assert classify_pod(make_pod("b", phase="Error")) == PodCategory.ERROR

    def test_stuck_by_container_status(self):
        assert classify_pod(make_pod("a", phase="Unknown")) == PodCategory.STUCK
        assert classify_pod(make_pod("b", container_reasons=["NodeLost"])) == PodCategory.STUCK
        assert classify_pod(make_pod("c", container_reasons=["CrashLoopBackOff"])) == PodCategory.HEALTHY

    def test_readiness_only_counts_when_asked(self):
        pod = make_pod("not-ready", ready="False")

        assert classify_pod(pod) == PodCategory.HEALTHY
        assert classify_pod(pod, readiness_counts=True) == PodCategory.STUCK


class TestStuckDetection:
    """Tests for the union of both stuck heuristics."""

    def test_heuristics_are_independent(self):
        lost_but_ready = make_pod("lost", ready="True", container_reasons=["ContainerStatusUnknown"])
        not_ready = make_pod("slow", ready="False")

        assert is_stuck_by_container_status(lost_but_ready)
        assert not is_stuck_by_readiness(lost_but_ready)
        assert is_stuck_by_readiness(not_ready)
        assert not is_stuck_by_container_status(not_ready)

    def test_union_is_deduplicated_and_sorted(self):
        pods = [
            make_pod("b-not-ready", namespace="kube-system", ready="False"),
            make_pod("a-lost", namespace="kube-system", ready="False", container_reasons=["Unknown"]),
            make_pod("c-lost-ready", namespace="kube-system", container_reasons=["NodeLost"]),
            make_pod("d-fine", namespace="kube-system"),
        ]

        stuck = find_stuck_pods(pods)

        assert [p.name for p in stuck] == ["a-lost", "b-not-ready", "c-lost-ready"]

    def test_terminating_and_error_pods_are_not_stuck(self):
        pods = [
            make_pod("going", ready="False", terminating=True),
            make_pod("failed", phase="Failed", ready="False"),
        ]

        assert find_stuck_pods(pods) == []


class TestCniClassification:
    """Tests for network-plugin state."""

    def test_absent(self):
        assert classify_cni([make_pod("web-1")], PATTERNS) == CniState.ABSENT

    def test_healthy(self):
        pods = [make_pod("kube-flannel-ds-abc"), make_pod("kube-flannel-ds-def")]

        assert classify_cni(pods, PATTERNS) == CniState.HEALTHY

    def test_degraded_when_any_plugin_pod_not_running(self):
        pods = [make_pod("calico-node-1"), make_pod("calico-node-2", phase="Pending")]

        assert classify_cni(pods, PATTERNS) == CniState.DEGRADED

    def test_pattern_match_is_case_insensitive(self):
        assert classify_cni([make_pod("Cilium-agent")], PATTERNS) == CniState.HEALTHY
