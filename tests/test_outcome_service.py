"""Tests for the outcome group tree service."""
import threading

import pytest

from app.domain.exceptions import (
    AuthorizationError, InvalidMoveError, MissingParameterError, NotFoundError, ValidationError,
)
from app.domain.models import ContextType, EnrollmentType
from app.services.kuzu_outcome_service import toggle_selection
from app.utils.safe_kuzu_manager import get_safe_kuzu_manager

COURSE = ContextType.COURSE
ACCOUNT = ContextType.ACCOUNT


@pytest.fixture
def outcomes(services):
    return services.outcomes


@pytest.fixture
def tree(outcomes, course, teacher):
    """
    Biology 101 (root)
      Cells
        Organelles
      Genetics
    """
    cells = outcomes.create_group(teacher, COURSE, course.id, 'Cells')
    organelles = outcomes.create_group(teacher, COURSE, course.id, 'Organelles', parent_id=cells.id)
    genetics = outcomes.create_group(teacher, COURSE, course.id, 'Genetics')
    root = outcomes.ensure_root(COURSE, course.id)
    return {'root': root, 'cells': cells, 'organelles': organelles, 'genetics': genetics}


def test_root_group_is_created_once(outcomes, course, teacher):
    first = outcomes.collections(teacher, COURSE, course.id)
    second = outcomes.collections(teacher, COURSE, course.id)
    assert first['rootId'] == second['rootId']
    root = first['collections'][first['rootId']]
    assert root['name'] == 'Biology 101'
    assert root['isRootGroup'] is True
    assert root['descriptor'] == '0 Groups | 0 Outcomes'


def test_collections_lists_root_children_with_descriptors(outcomes, course, teacher, tree):
    outcomes.create_outcome(teacher, tree['organelles'].id, 'Mitochondria')
    outcomes.create_outcome(teacher, tree['cells'].id, 'Cell membrane')

    data = outcomes.collections(teacher, COURSE, course.id)
    root = data['collections'][data['rootId']]
    assert root['collections'] == [tree['cells'].id, tree['genetics'].id]
    cells = data['collections'][tree['cells'].id]
    assert cells['descriptor'] == '1 Group | 2 Outcomes'
    assert cells['parentGroupId'] == data['rootId']
    assert tree['organelles'].id not in data['collections']

    sub = outcomes.subgroups(teacher, tree['cells'].id)
    assert list(sub['collections']) == [tree['organelles'].id]


def test_students_read_but_cannot_manage(outcomes, course, student, tree):
    assert outcomes.collections(student, COURSE, course.id)['rootId'] == tree['root'].id
    with pytest.raises(AuthorizationError):
        outcomes.create_group(student, COURSE, course.id, 'Nope')


def test_outsiders_cannot_read(outcomes, course, make_user, tree):
    outsider = make_user('Olly Outsider')
    with pytest.raises(AuthorizationError):
        outcomes.collections(outsider, COURSE, course.id)


def test_account_admin_manages_account_and_course_outcomes(outcomes, account, course, admin):
    group = outcomes.create_group(admin, ACCOUNT, account.id, 'District Standards')
    assert group.context_type == 'Account'
    assert outcomes.can_manage(admin, COURSE, course.id)


def test_create_group_requires_title(outcomes, course, teacher):
    with pytest.raises(MissingParameterError):
        outcomes.create_group(teacher, COURSE, course.id, '   ')


def test_move_group(outcomes, teacher, tree):
    moved = outcomes.move_group(teacher, tree['genetics'].id, tree['cells'].id)
    assert moved.parent_id == tree['cells'].id
    assert outcomes.subgroups(teacher, tree['cells'].id)['collections'].keys() == {
        tree['organelles'].id, tree['genetics'].id,
    }


def test_move_group_into_descendant_is_rejected(outcomes, teacher, tree):
    with pytest.raises(InvalidMoveError):
        outcomes.move_group(teacher, tree['cells'].id, tree['organelles'].id)
    with pytest.raises(InvalidMoveError):
        outcomes.move_group(teacher, tree['cells'].id, tree['cells'].id)
    with pytest.raises(InvalidMoveError):
        outcomes.move_group(teacher, tree['root'].id, tree['cells'].id)
    with pytest.raises(MissingParameterError):
        outcomes.move_group(teacher, tree['cells'].id, None)
    assert outcomes.require_group(tree['cells'].id).parent_id == tree['root'].id


def test_move_group_across_contexts_is_rejected(outcomes, services, account, course, teacher, tree):
    other = services.courses.create_course('Chemistry', account.id)
    services.courses.enroll(teacher.id, other.id, EnrollmentType.TEACHER)
    foreign = outcomes.create_group(teacher, COURSE, other.id, 'Atoms')
    with pytest.raises(InvalidMoveError):
        outcomes.move_group(teacher, tree['cells'].id, foreign.id)


def test_remove_group_detaches_outcomes_from_subtree(outcomes, teacher, tree):
    kept = outcomes.create_outcome(teacher, tree['genetics'].id, 'DNA')
    orphan = outcomes.create_outcome(teacher, tree['organelles'].id, 'Ribosome')

    removed = outcomes.remove_group(teacher, tree['cells'].id)
    assert set(removed) == {tree['cells'].id, tree['organelles'].id}
    with pytest.raises(NotFoundError):
        outcomes.require_group(tree['organelles'].id)

    root_detail = outcomes.group_detail(teacher, tree['root'].id)
    assert [o['id'] for o in root_detail['outcomes']] == [kept.id]
    assert outcomes.outcome_repo.get_by_id(orphan.id) is not None
    assert outcomes.outcome_repo.group_id_for(orphan.id) is None


def test_root_group_cannot_be_removed(outcomes, teacher, tree):
    with pytest.raises(ValidationError):
        outcomes.remove_group(teacher, tree['root'].id)


def test_outcome_belongs_to_a_single_group(outcomes, teacher, tree):
    outcome = outcomes.create_outcome(teacher, tree['cells'].id, 'Cell cycle')
    outcomes.move_outcomes(teacher, [outcome.id], tree['genetics'].id)
    outcomes.move_outcomes(teacher, [outcome.id], tree['genetics'].id)

    assert outcomes.outcome_repo.group_id_for(outcome.id) == tree['genetics'].id
    cells = outcomes.group_detail(teacher, tree['cells'].id)
    genetics = outcomes.group_detail(teacher, tree['genetics'].id)
    assert cells['outcomes'] == []
    assert [o['groupId'] for o in genetics['outcomes']] == [tree['genetics'].id]


def test_move_outcomes_validates_input(outcomes, teacher, tree):
    with pytest.raises(MissingParameterError):
        outcomes.move_outcomes(teacher, [], tree['cells'].id)
    with pytest.raises(MissingParameterError):
        outcomes.move_outcomes(teacher, ['x'], None)
    with pytest.raises(NotFoundError):
        outcomes.move_outcomes(teacher, ['missing'], tree['cells'].id)


def test_remove_outcome(outcomes, teacher, tree):
    outcome = outcomes.create_outcome(teacher, tree['cells'].id, 'Osmosis')
    with pytest.raises(NotFoundError):
        outcomes.remove_outcome(teacher, tree['genetics'].id, outcome.id)
    outcomes.remove_outcome(teacher, tree['cells'].id, outcome.id)
    assert outcomes.group_detail(teacher, tree['cells'].id)['outcomes'] == []


def test_remove_outcomes_skips_unlinked_ids(outcomes, teacher, tree):
    first = outcomes.create_outcome(teacher, tree['cells'].id, 'A')
    second = outcomes.create_outcome(teacher, tree['cells'].id, 'B')
    removed = outcomes.remove_outcomes(teacher, tree['cells'].id, [first.id, 'missing', second.id])
    assert removed == [first.id, second.id]


def test_group_detail_pages_and_searches(outcomes, teacher, tree):
    titles = ['Alpha', 'Beta', 'Gamma', 'Delta', 'Epsilon']
    for title in titles:
        outcomes.create_outcome(teacher, tree['cells'].id, title, description=f'{title} outcome')
    outcomes.create_outcome(teacher, tree['organelles'].id, 'Zeta', description='nested')

    first = outcomes.group_detail(teacher, tree['cells'].id, per_page=4)
    assert first['group']['outcomesCount'] == 6
    assert [o['title'] for o in first['outcomes']] == ['Alpha', 'Beta', 'Delta', 'Epsilon']
    assert first['pageInfo'] == {'hasNextPage': True, 'endCursor': '4'}

    second = outcomes.group_detail(teacher, tree['cells'].id, cursor='4', per_page=4)
    assert [o['title'] for o in second['outcomes']] == ['Gamma', 'Zeta']
    assert second['pageInfo']['hasNextPage'] is False

    searched = outcomes.group_detail(teacher, tree['cells'].id, search='NESTED')
    assert [o['title'] for o in searched['outcomes']] == ['Zeta']

    with pytest.raises(ValidationError):
        outcomes.group_detail(teacher, tree['cells'].id, cursor='abc')


def test_move_targets_excludes_moving_group_subtree(outcomes, teacher, tree):
    data = outcomes.move_targets(teacher, tree['cells'].id)
    assert data['title'] == 'Move Cells'
    assert data['type'] == 'group'
    assert data['tree']['id'] == tree['root'].id
    assert [c['id'] for c in data['tree']['collections']] == [tree['genetics'].id]


def test_move_targets_for_outcome_keeps_full_tree(outcomes, teacher, tree):
    outcome = outcomes.create_outcome(teacher, tree['cells'].id, 'Osmosis')
    data = outcomes.move_targets(teacher, tree['cells'].id, outcome_id=outcome.id)
    assert data['title'] == 'Move Osmosis'
    assert data['type'] == 'outcome'
    cells = next(c for c in data['tree']['collections'] if c['id'] == tree['cells'].id)
    assert [c['id'] for c in cells['collections']] == [tree['organelles'].id]


def test_toggle_selection():
    assert toggle_selection([], 'a') == ['a']
    assert toggle_selection(['a', 'b'], 'a') == ['b']
    assert toggle_selection(['a'], 'b') == ['a', 'b']


def test_move_targets_rejects_outcome_from_another_context(outcomes, account, admin, teacher, tree):
    standards = outcomes.create_group(admin, ACCOUNT, account.id, 'District Standards')
    foreign = outcomes.create_outcome(admin, standards.id, 'Account secret outcome')
    with pytest.raises(ValidationError):
        outcomes.move_targets(teacher, tree['cells'].id, outcome_id=foreign.id)


def test_move_targets_requires_outcome_under_group(outcomes, teacher, tree):
    elsewhere = outcomes.create_outcome(teacher, tree['genetics'].id, 'DNA')
    with pytest.raises(NotFoundError):
        outcomes.move_targets(teacher, tree['cells'].id, outcome_id=elsewhere.id)

    nested = outcomes.create_outcome(teacher, tree['organelles'].id, 'Ribosome')
    assert outcomes.move_targets(teacher, tree['cells'].id, outcome_id=nested.id)['title'] == 'Move Ribosome'


def test_nesting_depth_is_limited(monkeypatch, outcomes, course, teacher, tree):
    monkeypatch.setattr(outcomes.group_repo, 'max_depth', 3)
    deep = outcomes.create_group(teacher, COURSE, course.id, 'Matrix', parent_id=tree['organelles'].id)
    with pytest.raises(ValidationError):
        outcomes.create_group(teacher, COURSE, course.id, 'Too deep', parent_id=deep.id)

    with pytest.raises(InvalidMoveError):
        outcomes.move_group(teacher, tree['cells'].id, tree['genetics'].id)
    assert outcomes.require_group(tree['cells'].id).parent_id == tree['root'].id

    outcomes.move_group(teacher, tree['genetics'].id, tree['organelles'].id)
    assert outcomes.group_repo.depth(tree['genetics'].id) == 3


def test_concurrent_links_keep_a_single_group(outcomes, teacher, tree):
    outcome = outcomes.create_outcome(teacher, tree['cells'].id, 'Cell cycle')
    targets = [tree['genetics'].id, tree['organelles'].id]

    for _ in range(10):
        barrier = threading.Barrier(len(targets))
        errors = []

        def link(group_id):
            barrier.wait()
            try:
                outcomes.outcome_repo.link(group_id, outcome.id)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=link, args=(group_id,)) for group_id in targets]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        links = get_safe_kuzu_manager().query_value(
            "MATCH (:OutcomeGroup)-[r:CONTAINS_OUTCOME]->(n:LearningOutcome {id: $id}) RETURN COUNT(r)",
            {'id': outcome.id})
        assert links == 1


def test_remove_group_drops_links_and_marks_deleted_together(outcomes, teacher, tree):
    outcome = outcomes.create_outcome(teacher, tree['organelles'].id, 'Ribosome')
    outcomes.remove_group(teacher, tree['cells'].id)
    links = get_safe_kuzu_manager().query_value(
        "MATCH (:OutcomeGroup)-[r:CONTAINS_OUTCOME]->(n:LearningOutcome {id: $id}) RETURN COUNT(r)",
        {'id': outcome.id})
    assert links == 0
    assert outcomes.group_repo.get_by_id(tree['organelles'].id).workflow_state == 'deleted'
