import unittest

import numpy as np

from posebind.core.landmarks import LandmarkSet, PoseFrame, PoseLandmark as L
from posebind.core.quaternion import quat_rotate_vector
from posebind.core.timing import LatestFrameSlot
from posebind.motion.bone_mapping import BoneMapping, PROXY_SEGMENTS, UP
from posebind.motion.dispatcher import (
    DispatcherState,
    RetargetDispatcher,
    RetargetSettings,
    RigDescriptor,
)
from posebind.motion.normalizer import NormalizerSettings, normalize_hip_centered
from pose_fixtures import MIXAMO_BONES, handles_for, standing_pose


def skeleton_rig(names=MIXAMO_BONES, **kwargs):
    return RigDescriptor(handles=handles_for(names), has_skeleton=True, name="mannequin", **kwargs)


PROXY_NAMES = ["nose", "left_shoulder", "joint_13", "leftWrist", "hipCenter"]


def proxy_rig(**kwargs):
    return RigDescriptor(handles=handles_for(PROXY_NAMES), has_skeleton=False, name="boxes", **kwargs)


class RebindingDispatcher(RetargetDispatcher):
    """Binds a replacement rig just before callbacks for the current frame run."""

    def __init__(self, replacement):
        super().__init__()
        self.replacement = replacement

    def _apply_callbacks(self, rig, snapshot):
        if self.replacement is not None:
            replacement, self.replacement = self.replacement, None
            self.bind_rig(replacement)
        super()._apply_callbacks(rig, snapshot)


class TestUnbound(unittest.TestCase):
    def test_frames_ignored_without_rig(self):
        dispatcher = RetargetDispatcher()
        self.assertEqual(dispatcher.state, DispatcherState.UNBOUND)
        self.assertIsNone(dispatcher.process_frame(standing_pose()))
        self.assertIsNone(dispatcher.snapshot)
        self.assertEqual(dispatcher.stats["frames_processed"], 0)


class TestSkeletonRetargeting(unittest.TestCase):
    def setUp(self):
        self.dispatcher = RetargetDispatcher()
        self.dispatcher.bind_rig(skeleton_rig())

    def test_binding_resolves_all_roles(self):
        self.assertEqual(self.dispatcher.state, DispatcherState.BOUND_SKELETON)
        self.assertEqual(len(self.dispatcher.resolved_bones), 17)
        self.assertEqual(self.dispatcher.unresolved_roles, ())
        self.assertEqual(
            self.dispatcher.resolved_bones["left_forearm"].bone_name, "mixamorig:LeftForeArm"
        )

    def test_straight_down_arm(self):
        snapshot = self.dispatcher.process_frame(standing_pose())
        bone = snapshot.bones["left_arm"]

        self.assertEqual(bone.bone_name, "mixamorig:LeftArm")
        self.assertEqual(bone.handle, "handle:mixamorig:LeftArm")
        np.testing.assert_allclose(bone.rotation, [0.0, 0.0, 0.0, -1.0], atol=1e-9)
        np.testing.assert_allclose(bone.rotation_xyzw, [0.0, 0.0, -1.0, 0.0], atol=1e-9)
        np.testing.assert_allclose(quat_rotate_vector(bone.rotation, UP), [0.0, -1.0, 0.0], atol=1e-9)

    def test_straight_down_arm_in_y_up_input(self):
        settings = RetargetSettings(normalizer=NormalizerSettings(invert_y=False), history_size=1)
        dispatcher = RetargetDispatcher(settings)
        dispatcher.bind_rig(skeleton_rig())

        frame = standing_pose()
        frame[L.LEFT_SHOULDER] = {"x": -0.5, "y": 0.0, "z": 0.0, "visibility": 1.0}
        frame[L.LEFT_ELBOW] = {"x": -0.5, "y": -0.5, "z": 0.0, "visibility": 1.0}
        for _ in range(3):
            snapshot = dispatcher.process_frame(frame)
        rotation = snapshot.bones["left_arm"].rotation
        np.testing.assert_allclose(quat_rotate_vector(rotation, UP), [0.0, -1.0, 0.0], atol=1e-9)

    def test_every_role_written_on_clean_frame(self):
        snapshot = self.dispatcher.process_frame(standing_pose())
        self.assertEqual(snapshot.updated, frozenset(self.dispatcher.resolved_bones))
        for update in snapshot.bones.values():
            self.assertAlmostEqual(np.linalg.norm(update.rotation), 1.0)

    def test_snapshot_contents(self):
        snapshot = self.dispatcher.process_frame(PoseFrame.from_landmarks(standing_pose(), 2.5))
        self.assertEqual(snapshot.timestamp, 2.5)
        self.assertEqual(snapshot.frame_number, 1)
        self.assertEqual(snapshot.state, DispatcherState.BOUND_SKELETON)
        self.assertAlmostEqual(snapshot.confidence, 1.0)
        self.assertAlmostEqual(snapshot.joint_angles["left_elbow"], np.pi, places=6)
        self.assertFalse(snapshot.stable)
        self.assertFalse(snapshot.bones["spine"].rotation.flags.writeable)

        second = self.dispatcher.process_frame(standing_pose())
        self.assertTrue(second.stable)
        self.assertEqual(second.frame_number, 2)

    def test_low_confidence_joint_holds_previous_rotation(self):
        first = self.dispatcher.process_frame(standing_pose())
        moved = standing_pose(
            visibilities={L.LEFT_WRIST: 0.2},
            offsets={L.LEFT_WRIST: (0.1, -0.1), L.RIGHT_ELBOW: (-0.1, 0.0)},
        )
        second = self.dispatcher.process_frame(moved)

        self.assertNotIn("left_forearm", second.updated)
        self.assertNotIn("left_hand", second.updated)
        np.testing.assert_array_equal(
            second.bones["left_forearm"].rotation, first.bones["left_forearm"].rotation
        )
        np.testing.assert_array_equal(
            second.bones["left_hand"].rotation, first.bones["left_hand"].rotation
        )
        self.assertIn("left_arm", second.updated)
        self.assertIn("right_arm", second.updated)
        self.assertFalse(np.allclose(
            second.bones["right_arm"].rotation, first.bones["right_arm"].rotation
        ))

    def test_incomplete_frames_dropped(self):
        first = self.dispatcher.process_frame(standing_pose())

        self.assertIsNone(self.dispatcher.process_frame(standing_pose()[:32]))
        with_gap = standing_pose()
        with_gap[L.LEFT_KNEE] = None
        self.assertIsNone(self.dispatcher.process_frame(with_gap))
        garbled = standing_pose()
        garbled[0] = "nose"
        self.assertIsNone(self.dispatcher.process_frame(garbled))

        self.assertIs(self.dispatcher.snapshot, first)
        self.assertEqual(self.dispatcher.stats["frames_dropped"], 3)
        self.assertEqual(self.dispatcher.stats["frames_processed"], 1)

    def test_low_pose_confidence_dropped(self):
        self.assertIsNone(self.dispatcher.process_frame(standing_pose(visibility=0.3)))
        self.assertIsNone(self.dispatcher.snapshot)

    def test_unreliable_key_joints_dropped(self):
        occluded = {L.LEFT_KNEE: 0.1, L.RIGHT_KNEE: 0.1, L.LEFT_WRIST: 0.1, L.RIGHT_WRIST: 0.1}
        frame = standing_pose(visibilities=occluded)
        # Overall visibility is still high
        self.assertGreater(RetargetDispatcher.pose_confidence(frame), 0.8)
        self.assertIsNone(self.dispatcher.process_frame(frame))

    def test_deterministic(self):
        frames = [
            standing_pose(),
            standing_pose(offsets={L.LEFT_ELBOW: (0.05, -0.05)}),
            standing_pose(offsets={L.LEFT_ELBOW: (0.1, -0.1), L.LEFT_WRIST: (0.2, -0.2)}),
        ]
        other = RetargetDispatcher()
        other.bind_rig(skeleton_rig())
        for frame in frames:
            a = self.dispatcher.process_frame(frame, timestamp=0.0)
            b = other.process_frame(frame, timestamp=0.0)
            for role in a.bones:
                np.testing.assert_array_equal(a.bones[role].rotation, b.bones[role].rotation)

    def test_smoothing_damps_sudden_change(self):
        self.dispatcher.process_frame(standing_pose())
        raised = standing_pose(offsets={L.LEFT_ELBOW: (0.15, -0.15), L.LEFT_WRIST: (0.3, -0.3)})
        snapshot = self.dispatcher.process_frame(raised)
        # Elbow straight out to the side; smoothed rotation lags behind it
        direction = quat_rotate_vector(snapshot.bones["left_arm"].rotation, UP)
        self.assertLess(direction[0], 1.0 - 1e-3)
        self.assertGreater(direction[0], 0.0)

    def test_output_blend(self):
        with self.assertRaises(ValueError):
            RetargetSettings(output_blend=0.0)

        settings = RetargetSettings(output_blend=0.5, history_size=1)
        dispatcher = RetargetDispatcher(settings)
        dispatcher.bind_rig(skeleton_rig())
        dispatcher.process_frame(standing_pose())
        raised = standing_pose(offsets={L.LEFT_ELBOW: (0.15, -0.15)})
        snapshot = dispatcher.process_frame(raised)
        # Halfway between straight down and straight out
        direction = quat_rotate_vector(snapshot.bones["left_arm"].rotation, UP)
        np.testing.assert_allclose(direction, [np.sqrt(0.5), -np.sqrt(0.5), 0.0], atol=1e-6)

    def test_apply_rotation_callback(self):
        applied = {}
        dispatcher = RetargetDispatcher()
        dispatcher.bind_rig(skeleton_rig(apply_rotation=lambda handle, q: applied.__setitem__(handle, q)))
        snapshot = dispatcher.process_frame(standing_pose())
        self.assertEqual(len(applied), len(snapshot.updated))
        np.testing.assert_array_equal(
            applied["handle:mixamorig:LeftArm"], snapshot.bones["left_arm"].rotation
        )

    def test_nan_visibility_endpoint_not_written(self):
        first = self.dispatcher.process_frame(standing_pose())
        garbage = standing_pose(
            visibilities={L.LEFT_WRIST: float("nan")},
            offsets={L.LEFT_WRIST: (0.1, -0.1)},
        )
        second = self.dispatcher.process_frame(garbage)

        self.assertNotIn("left_forearm", second.updated)
        self.assertNotIn("left_hand", second.updated)
        np.testing.assert_array_equal(
            second.bones["left_forearm"].rotation, first.bones["left_forearm"].rotation
        )

    def test_out_of_range_visibility_does_not_inflate_confidence(self):
        frame = standing_pose(visibility=0.3, visibilities={L.NOSE: 7.0})
        self.assertLess(RetargetDispatcher.pose_confidence(frame), 0.5)
        self.assertIsNone(self.dispatcher.process_frame(frame))

    def test_root_follows_hips(self):
        snapshot = self.dispatcher.process_frame(standing_pose())
        # Hip midpoint (0.5, 0.6) in image space
        np.testing.assert_allclose(snapshot.root, [0.0, -0.4, 0.0], atol=1e-9)

    def test_root_held_while_hip_unreliable(self):
        first = self.dispatcher.process_frame(standing_pose())
        moved = standing_pose(
            visibilities={L.LEFT_HIP: 0.1},
            offsets={L.LEFT_HIP: (0.2, 0.0), L.RIGHT_HIP: (0.2, 0.0)},
        )
        second = self.dispatcher.process_frame(moved)
        np.testing.assert_array_equal(second.root, first.root)

    def test_callbacks_go_to_rig_bound_for_frame(self):
        original, replacement = {}, {}
        dispatcher = RebindingDispatcher(
            skeleton_rig(apply_rotation=lambda handle, q: replacement.__setitem__(handle, q))
        )
        dispatcher.bind_rig(skeleton_rig(apply_rotation=lambda handle, q: original.__setitem__(handle, q)))
        snapshot = dispatcher.process_frame(standing_pose())

        self.assertEqual(len(original), len(snapshot.updated))
        self.assertEqual(replacement, {})
        # The replacement rig is bound afterwards, with a clean pose
        self.assertEqual(dispatcher.state, DispatcherState.BOUND_SKELETON)
        self.assertIsNone(dispatcher.snapshot)


class TestRigLifecycle(unittest.TestCase):
    def test_partial_rig_skips_unresolved_roles(self):
        dispatcher = RetargetDispatcher()
        dispatcher.bind_rig(skeleton_rig(["mixamorig:LeftArm", "Head"]))
        self.assertEqual(set(dispatcher.resolved_bones), {"left_arm", "neck"})
        self.assertEqual(len(dispatcher.unresolved_roles), 15)

        snapshot = dispatcher.process_frame(standing_pose())
        self.assertEqual(set(snapshot.bones), {"left_arm", "neck"})

    def test_empty_rig_binds_without_error(self):
        dispatcher = RetargetDispatcher()
        dispatcher.bind_rig(skeleton_rig([]))
        snapshot = dispatcher.process_frame(standing_pose())
        self.assertEqual(dict(snapshot.bones), {})

    def test_shared_target_warns(self):
        mappings = (
            BoneMapping("upper", L.LEFT_SHOULDER, L.LEFT_ELBOW, ("Arm",)),
            BoneMapping("lower", L.LEFT_ELBOW, L.LEFT_WRIST, ("Arm",)),
        )
        dispatcher = RetargetDispatcher(bone_mappings=mappings)
        with self.assertLogs("posebind.motion.dispatcher", level="WARNING") as logs:
            dispatcher.bind_rig(skeleton_rig(["Arm"]))
        self.assertTrue(any("both resolved to 'Arm'" in line for line in logs.output))

    def test_unbind_clears_state(self):
        dispatcher = RetargetDispatcher()
        dispatcher.bind_rig(skeleton_rig())
        dispatcher.process_frame(standing_pose())
        dispatcher.process_frame(standing_pose(offsets={L.LEFT_ELBOW: (0.15, -0.15)}))

        dispatcher.unbind_rig()
        self.assertEqual(dispatcher.state, DispatcherState.UNBOUND)
        self.assertIsNone(dispatcher.snapshot)
        self.assertEqual(dispatcher.resolved_bones, {})
        self.assertIsNone(dispatcher.process_frame(standing_pose()))

        # No smoothing history leaks into the next binding
        dispatcher.bind_rig(skeleton_rig())
        raised = standing_pose(offsets={L.LEFT_ELBOW: (0.15, -0.15)})
        fresh = RetargetDispatcher()
        fresh.bind_rig(skeleton_rig())
        np.testing.assert_array_equal(
            dispatcher.process_frame(raised).bones["left_arm"].rotation,
            fresh.process_frame(raised).bones["left_arm"].rotation,
        )

    def test_rebind_replaces_rig(self):
        dispatcher = RetargetDispatcher()
        dispatcher.bind_rig(skeleton_rig())
        dispatcher.process_frame(standing_pose())
        dispatcher.bind_rig(proxy_rig())
        self.assertEqual(dispatcher.state, DispatcherState.BOUND_NO_SKELETON)
        self.assertIsNone(dispatcher.snapshot)
        self.assertEqual(dispatcher.resolved_bones, {})

    def test_reset(self):
        dispatcher = RetargetDispatcher()
        dispatcher.bind_rig(skeleton_rig())
        dispatcher.process_frame(standing_pose())

        dispatcher.reset()
        self.assertIsNotNone(dispatcher.snapshot)
        self.assertEqual(dispatcher.state, DispatcherState.BOUND_SKELETON)

        dispatcher.reset(clear_pose=True)
        self.assertIsNone(dispatcher.snapshot)
        self.assertEqual(len(dispatcher.resolved_bones), 17)


class TestProxyRetargeting(unittest.TestCase):
    def setUp(self):
        self.dispatcher = RetargetDispatcher()
        self.dispatcher.bind_rig(proxy_rig())

    def test_binding_resolves_named_parts(self):
        self.assertEqual(self.dispatcher.state, DispatcherState.BOUND_NO_SKELETON)
        parts = self.dispatcher.resolved_parts
        self.assertEqual(
            set(parts), {"nose", "left_shoulder", "left_elbow", "left_wrist", "hip_center"}
        )
        self.assertEqual(parts["left_elbow"].part_name, "joint_13")

    def test_parts_placed_hip_relative(self):
        snapshot = self.dispatcher.process_frame(standing_pose())
        self.assertEqual(set(snapshot.parts), set(self.dispatcher.resolved_parts))
        self.assertEqual(snapshot.updated, frozenset(snapshot.parts))
        self.assertEqual(dict(snapshot.bones), {})

        np.testing.assert_allclose(snapshot.parts["hip_center"].position, [0.0, 0.0, 0.0], atol=1e-9)
        np.testing.assert_allclose(
            snapshot.parts["nose"].position, [0.0, 0.45 * 2.5 / 0.3, 0.0], atol=1e-9
        )
        self.assertEqual(snapshot.parts["left_wrist"].handle, "handle:leftWrist")

    def test_segments_connect_anchors(self):
        snapshot = self.dispatcher.process_frame(standing_pose())
        self.assertEqual(len(snapshot.segments), len(PROXY_SEGMENTS))

        segment = snapshot.segments["left_shoulder-left_elbow"]
        np.testing.assert_allclose(segment.start, snapshot.parts["left_shoulder"].position)
        np.testing.assert_allclose(segment.end, snapshot.parts["left_elbow"].position)
        self.assertAlmostEqual(segment.confidence, 1.0)

    def test_positions_eased_toward_target(self):
        first = self.dispatcher.process_frame(standing_pose())
        moved = standing_pose(offsets={L.NOSE: (0.1, 0.0)})
        second = self.dispatcher.process_frame(moved)

        target = normalize_hip_centered(LandmarkSet.from_sequence(moved))[L.NOSE].position
        previous = first.parts["nose"].position
        np.testing.assert_allclose(
            second.parts["nose"].position, previous + (target - previous) * 0.15, atol=1e-9
        )

    def test_low_confidence_part_holds_position(self):
        first = self.dispatcher.process_frame(standing_pose())
        moved = standing_pose(visibilities={L.NOSE: 0.1}, offsets={L.NOSE: (0.1, 0.0)})
        second = self.dispatcher.process_frame(moved)
        self.assertNotIn("nose", second.updated)
        np.testing.assert_array_equal(second.parts["nose"].position, first.parts["nose"].position)

    def test_root_translates_with_subject(self):
        shifted = RetargetDispatcher()
        shifted.bind_rig(proxy_rig())
        offsets = {index: (0.3, 0.0) for index in range(33)}

        here = self.dispatcher.process_frame(standing_pose())
        there = shifted.process_frame(standing_pose(offsets=offsets))

        # Parts stay hip-relative; the root carries the translation
        np.testing.assert_allclose(there.parts["hip_center"].position, [0.0, 0.0, 0.0], atol=1e-9)
        np.testing.assert_allclose(there.root - here.root, [1.2, 0.0, 0.0], atol=1e-9)

    def test_root_handle_receives_translation(self):
        applied = {}
        dispatcher = RetargetDispatcher()
        dispatcher.bind_rig(proxy_rig(
            root_handle="avatar_root",
            apply_position=lambda handle, p: applied.__setitem__(handle, p),
        ))
        snapshot = dispatcher.process_frame(standing_pose())
        np.testing.assert_array_equal(applied["avatar_root"], snapshot.root)
        np.testing.assert_array_equal(applied["handle:nose"], snapshot.parts["nose"].position)


class TestLatestFrame(unittest.TestCase):
    def test_only_newest_frame_processed(self):
        dispatcher = RetargetDispatcher()
        dispatcher.bind_rig(skeleton_rig())
        slot = LatestFrameSlot()
        for t in (1.0, 2.0, 3.0):
            slot.put(PoseFrame.from_landmarks(standing_pose(), timestamp=t))

        self.assertEqual(slot.coalesced, 2)
        snapshot = dispatcher.process_latest(slot)
        self.assertEqual(snapshot.timestamp, 3.0)
        self.assertEqual(snapshot.frame_number, 1)
        self.assertIsNone(dispatcher.process_latest(slot))


class TestPoseConfidence(unittest.TestCase):
    def test_mean_visibility(self):
        self.assertAlmostEqual(RetargetDispatcher.pose_confidence(standing_pose(visibility=0.8)), 0.8)

    def test_unparseable_input(self):
        self.assertEqual(RetargetDispatcher.pose_confidence(["nose"]), 0.0)
