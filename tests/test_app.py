from datetime import timedelta, timezone

import pytest

from visitor_service.app import create_app
from visitor_service.dashboard import DashboardState, Policy, SnapshotPoller
from visitor_service.models import PresenceHeartbeat
from visitor_service.utils.timing import utc_now

from conftest import FakeFirebaseClient, make_user, make_visitor


@pytest.fixture
def fake_client():
    now = utc_now()
    return FakeFirebaseClient(
        visitors=[
            make_visitor('fresh', check_in=now - timedelta(hours=1), name='Alice Fresh'),
            make_visitor('stale', check_in=now - timedelta(hours=20), name='Bob Stale'),
            make_visitor(
                'gone',
                check_in=now - timedelta(hours=5),
                checked_out=True,
                check_out=now - timedelta(hours=2),
                checked_out_by='u1',
            ),
        ],
        users=[make_user('u1', display_name='Gate One'), make_user('u2')],
        heartbeats={
            'u1': PresenceHeartbeat(uid='u1', state='online', last_changed=now - timedelta(seconds=5)),
        },
    )


@pytest.fixture
def client(config, fake_client):
    state = DashboardState(Policy(tz=timezone.utc))
    poller = SnapshotPoller(fake_client, state)
    poller.refresh()
    app = create_app(config, client=fake_client, state=state, poller=poller)
    app.config['TESTING'] = True
    return app.test_client()


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    body = response.get_json()
    assert body['status'] == 'ok'
    assert body['service'] == 'visitor-dashboard-test'
    assert body['visitors'] == 3
    assert body['polling'] is False


def test_refresh(client, fake_client):
    assert client.post('/api/refresh').status_code == 200

    fake_client.fail_reads = True
    response = client.post('/api/refresh')
    assert response.status_code == 502
    assert response.get_json()['error'] == 'read failed'


def test_list_visitors_with_status(client):
    body = client.get('/api/visitors').get_json()
    by_id = {row['id']: row for row in body}
    assert by_id['fresh']['status'] == 'Active'
    assert by_id['stale']['status'] == 'Overdue'
    assert by_id['stale']['severity'] == 'High'
    assert by_id['gone']['status'] == 'CheckedOut'
    assert by_id['gone']['duration'] == '3h'


def test_search_visitors(client):
    body = client.get('/api/visitors?q=alice&field=name').get_json()
    assert [row['id'] for row in body] == ['fresh']

    assert client.get('/api/visitors?q=x&field=email').status_code == 400


def test_grouped_by_gender(client):
    body = client.get('/api/visitors/grouped?by=gender').get_json()
    assert [group['key'] for group in body] == ['N/A']
    assert body[0]['stats']['total'] == 3
    assert body[0]['stats']['overdue'] == 1


def test_grouped_by_day(client):
    body = client.get('/api/visitors/grouped').get_json()
    assert sum(group['stats']['total'] for group in body) == 3


def test_grouped_unknown_option(client):
    assert client.get('/api/visitors/grouped?by=age').status_code == 400


def test_overdue(client):
    body = client.get('/api/visitors/overdue').get_json()
    assert body['count'] == 1
    assert body['severity'] == {'Critical': 0, 'High': 1, 'Medium': 0}
    assert body['visitors'][0]['id'] == 'stale'


def test_edit_visitor(client, fake_client):
    response = client.patch('/api/visitors/fresh', json={
        'field': 'purpose',
        'value': 'Delivery',
        'editor': 'u1',
    })
    assert response.status_code == 200
    body = response.get_json()
    assert body['changed'] is True
    assert body['visitor']['purpose'] == 'Delivery'
    assert body['visitor']['editHistory'][0]['field'] == 'purpose'
    assert len(fake_client.saved_edits) == 1


def test_edit_visitor_no_op(client, fake_client):
    response = client.patch('/api/visitors/fresh', json={
        'field': 'name',
        'value': 'Alice Fresh',
        'editor': 'u1',
    })
    assert response.get_json()['changed'] is False
    assert fake_client.saved_edits == []


def test_edit_visitor_errors(client, fake_client):
    assert client.patch('/api/visitors/fresh', json={'field': 'name'}).status_code == 400
    assert client.patch('/api/visitors/ghost', json={
        'field': 'name', 'value': 'X', 'editor': 'u1',
    }).status_code == 404
    assert client.patch('/api/visitors/fresh', json={
        'field': 'checked_out', 'value': True, 'editor': 'u1',
    }).status_code == 400

    fake_client.fail_writes = True
    response = client.patch('/api/visitors/fresh', json={'field': 'name', 'value': 'X', 'editor': 'u1'})
    assert response.status_code == 502
    assert client.get('/api/visitors', query_string={'q': 'alice', 'field': 'name'}).get_json()[0]['name'] == 'Alice Fresh'


def test_checkout(client, fake_client):
    response = client.post('/api/visitors/stale/checkout', json={'operator': 'u2'})
    assert response.status_code == 200
    assert response.get_json()['visitor']['status'] == 'CheckedOut'

    again = client.post('/api/visitors/stale/checkout', json={'operator': 'u2'})
    assert again.status_code == 409
    assert len(fake_client.saved_checkouts) == 1


def test_checkout_requires_operator(client):
    assert client.post('/api/visitors/fresh/checkout', json={}).status_code == 400


def test_stats(client):
    body = client.get('/api/stats').get_json()
    assert body['totalVisitors'] == 3
    assert body['activeVisitors'] == 2
    assert body['overdueVisitors'] == 1
    assert body['checkedOutVisitors'] == 1


def test_report(client):
    body = client.get('/api/report').get_json()
    assert body['summary']['total'] == 3
    assert [row['id'] for row in body['rows']] == ['fresh', 'gone', 'stale']
    assert body['rows'][1]['checkedOutBy'] == 'Gate One'


def test_users_with_presence(client):
    body = client.get('/api/users').get_json()
    by_uid = {row['uid']: row for row in body['users']}
    assert by_uid['u1']['isOnline'] is True
    assert by_uid['u1']['presence']['color'] == 'green'
    assert by_uid['u2']['presence']['kind'] == 'NeverActive'
    assert body['online'] == 1
    assert body['realtime']['connections'] == 1


def test_create_user(client):
    response = client.post('/api/users', json={
        'email': 'new@example.com',
        'password': 'secret1',
        'role': 'admin',
    })
    assert response.status_code == 201
    assert response.get_json()['platform'] == 'web'

    assert client.post('/api/users', json={'email': 'x@y.z'}).status_code == 400


def test_change_role(client):
    response = client.patch('/api/users/u2/role', json={'role': 'admin'})
    assert response.status_code == 200
    assert response.get_json()['role'] == 'admin'

    assert client.patch('/api/users/u2/role', json={'role': 'owner'}).status_code == 400
    assert client.patch('/api/users/ghost/role', json={'role': 'user'}).status_code == 404


def test_delete_user(client, fake_client):
    assert client.delete('/api/users/u2').status_code == 204
    assert fake_client.deleted_users == ['u2']
    assert client.delete('/api/users/u2').status_code == 404


def test_change_display_name(client, fake_client):
    response = client.patch('/api/users/u2', json={'displayName': ' Night Desk '})
    assert response.status_code == 200
    assert response.get_json()['displayName'] == 'Night Desk'
    assert fake_client.name_changes == [('u2', 'Night Desk')]

    assert client.patch('/api/users/u2', json={'displayName': '   '}).status_code == 400
    assert client.patch('/api/users/ghost', json={'displayName': 'X'}).status_code == 404


def test_edit_plate_on_foot_visitor(client, fake_client):
    response = client.patch('/api/visitors/fresh', json={
        'field': 'vehicle_plate',
        'value': 'KAA 123A',
        'editor': 'u1',
    })
    assert response.status_code == 400
    assert fake_client.saved_edits == []
