"""Tests for the secondary index."""

from utils.index import SecondaryIndex


def _assert_consistent(manager):
    """Every index lookup agrees with a linear scan of the document."""
    index = manager.index
    for classroom in manager.document.classrooms:
        assert index.get_classroom(classroom.id) is classroom
        for student in classroom.students:
            assert index.get_student(classroom.id, student.id) is student
        for lesson in classroom.lessons:
            assert index.get_lesson(classroom.id, lesson.id) is lesson
        for column in classroom.columns:
            assert index.get_column(classroom.id, column.id) is column
    known = {c.id for c in manager.document.classrooms}
    assert set(index.classrooms_by_id) == known


class TestSecondaryIndex:
    def test_lookups_follow_every_structural_command(self, manager):
        c1 = manager.create_classroom("A")
        _assert_consistent(manager)
        c2 = manager.create_classroom("B")
        s1 = manager.add_student(c1.id, "Ada")
        manager.add_student(c2.id, "Bea")
        _assert_consistent(manager)
        lesson = manager.create_lesson(c1.id, "Listening drill", mode="ielts")
        _assert_consistent(manager)
        column = manager.add_column(c1.id, "Homework")
        _assert_consistent(manager)
        manager.delete_column(c1.id, column.id)
        assert manager.index.get_column(c1.id, column.id) is None
        manager.delete_lesson(c1.id, lesson.id)
        assert manager.index.get_lesson(c1.id, lesson.id) is None
        manager.delete_student(c1.id, s1.id)
        assert manager.index.get_student(c1.id, s1.id) is None
        _assert_consistent(manager)
        manager.delete_classroom(c2.id)
        assert manager.index.get_classroom(c2.id) is None
        _assert_consistent(manager)
        manager.undo()
        _assert_consistent(manager)
        assert manager.index.get_classroom(c2.id) is not None

    def test_missing_lookups_return_none(self):
        index = SecondaryIndex()
        assert index.get_classroom("nope") is None
        assert index.get_student("nope", 1) is None
        assert index.get_lesson("nope", 1) is None
        assert index.get_column("nope", 1) is None

    def test_rebuild_replaces_previous_state(self, manager):
        classroom = manager.create_classroom("A")
        manager.document.classrooms = []
        manager.rebuild_index()
        assert manager.index.get_classroom(classroom.id) is None
