import json

from metabolism.models.core import GrowthVector, KnowledgeGap
from metabolism.services.gap_bus import KnowledgeGapBus
from metabolism.services.growth_vectors import GrowthVectorStore
from metabolism.utils.json_utils import read_json


def _vector(vid='gv_1'):
    return GrowthVector(id=vid,
                        text='Corrections should check runtime state first',
                        type='user_correction',
                        source_id='cand_1',
                        timestamp='2026-01-01T00:00:00.000Z',
                        significance=0.8,
                        weight=0.9)


def test_growth_vector_store_appends_to_candidates(tmp_path):
    path = tmp_path / 'memory' / 'growth-vectors.json'
    store = GrowthVectorStore(str(path))

    assert store.append([_vector('gv_1')]) is True
    assert store.append([_vector('gv_2')]) is True

    document = read_json(str(path))
    assert document['vectors'] == []
    assert [c['id'] for c in document['candidates']] == ['gv_1', 'gv_2']
    assert document['candidates'][0] == {
        'id': 'gv_1',
        'text': 'Corrections should check runtime state first',
        'type': 'user_correction',
        'source': 'metabolism',
        'sourceId': 'cand_1',
        'timestamp': '2026-01-01T00:00:00.000Z',
        'entropy': 0.8,
        'validation_status': 'candidate',
        'weight': 0.9,
    }


def test_growth_vector_store_preserves_validated_vectors(tmp_path):
    path = tmp_path / 'growth-vectors.json'
    path.write_text(json.dumps({'vectors': [{'id': 'validated'}]}))

    GrowthVectorStore(str(path)).append([_vector()])

    document = read_json(str(path))
    assert document['vectors'] == [{'id': 'validated'}]
    assert len(document['candidates']) == 1


def test_growth_vector_store_recovers_from_corrupt_file(tmp_path):
    path = tmp_path / 'growth-vectors.json'
    path.write_text('{broken')

    assert GrowthVectorStore(str(path)).append([_vector()]) is True
    assert len(read_json(str(path))['candidates']) == 1


def test_growth_vector_store_reports_write_failure(tmp_path):
    blocker = tmp_path / 'not-a-dir'
    blocker.write_text('')
    store = GrowthVectorStore(str(blocker / 'growth-vectors.json'))
    assert store.append([_vector()]) is False


def test_gap_bus_isolates_failing_listener():
    bus = KnowledgeGapBus()
    received = []

    def broken(gaps, agent_id):
        raise RuntimeError('boom')

    bus.subscribe(broken)
    bus.subscribe(lambda gaps, agent_id: received.append((agent_id, [g.question for g in gaps])))

    gaps = [KnowledgeGap(question='What is unclear here?', source_id='cand_1', timestamp='t')]
    assert bus.publish(gaps, 'main') == 1
    assert received == [('main', ['What is unclear here?'])]


def test_gap_bus_unsubscribe():
    bus = KnowledgeGapBus()
    calls = []
    unsubscribe = bus.subscribe(lambda gaps, agent_id: calls.append(agent_id))
    assert len(bus) == 1

    unsubscribe()
    unsubscribe()
    assert len(bus) == 0
    assert bus.publish([], 'main') == 0
    assert calls == []
