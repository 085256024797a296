import json
import unittest
from unittest.mock import MagicMock
import requests
from cloudflare_api import CloudflareClient, DNSRecord, DNSRecordUpdate, FetchResult, UpdateResult

RECORD_JSON = {
    'id': 'rec1',
    'zone_id': 'zoneA',
    'zone_name': 'example.com',
    'name': 'home.example.com',
    'type': 'A',
    'content': '203.0.113.1',
    'proxiable': True,
    'proxied': True,
    'ttl': 300,
    'meta': {'auto_added': False, 'managed_by_apps': False, 'managed_by_argo_tunnel': False},
    'comment': 'home router',
    'tags': ['ddns'],
    'created_on': '2024-01-01T00:00:00Z',
    'modified_on': '2024-01-02T00:00:00Z',
}


def make_response(status_code=200, json_data=None, text=''):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


def real_response(status_code, body=b''):
    response = requests.Response()
    response.status_code = status_code
    response._content = body
    return response


def make_client():
    session = MagicMock()
    return CloudflareClient('key', 'me@example.com', session=session, timeout=3), session


class TestDNSRecord(unittest.TestCase):
    def test_from_dict(self):
        record = DNSRecord.from_dict(dict(RECORD_JSON, unknown_field='x'))
        self.assertEqual(record.id, 'rec1')
        self.assertEqual(record.zone_id, 'zoneA')
        self.assertEqual(record.ttl, 300)
        self.assertEqual(record.tags, ('ddns',))
        self.assertTrue(record.proxied)
        self.assertIsNone(record.priority)

    def test_update_copies_record(self):
        record = DNSRecord.from_dict(RECORD_JSON)
        body = DNSRecordUpdate.for_record(record, '203.0.113.9').to_dict()
        self.assertEqual(body, {
            'content': '203.0.113.9',
            'name': 'home.example.com',
            'proxied': True,
            'type': 'A',
            'comment': 'home router',
            'id': 'rec1',
            'tags': ['ddns'],
            'ttl': 300,
        })


class TestFetchRecords(unittest.TestCase):
    def test_fetch_success(self):
        client, session = make_client()
        session.get.return_value = make_response(200, {
            'result': [RECORD_JSON],
            'success': True,
            'errors': [],
            'messages': [],
            'result_info': {'page': 1, 'per_page': 100, 'count': 1, 'total_count': 1, 'total_pages': 1},
        })
        result = client.fetch_records('zoneA')
        self.assertTrue(result.ok)
        self.assertEqual(len(result.records), 1)
        self.assertEqual(result.records[0].content, '203.0.113.1')

        args, kwargs = session.get.call_args
        self.assertEqual(args[0], 'https://api.cloudflare.com/client/v4/zones/zoneA/dns_records')
        self.assertEqual(kwargs['headers']['X-Auth-Key'], 'key')
        self.assertEqual(kwargs['headers']['X-Auth-Email'], 'me@example.com')
        self.assertEqual(kwargs['headers']['Content-Type'], 'application/json')
        self.assertEqual(kwargs['timeout'], 3)

    def test_fetch_empty_zone_is_not_a_failure(self):
        client, session = make_client()
        session.get.return_value = make_response(200, {'result': [], 'success': True})
        result = client.fetch_records('zoneA')
        self.assertTrue(result.ok)
        self.assertEqual(result.records, ())

    def test_fetch_http_error(self):
        client, session = make_client()
        session.get.return_value = make_response(403, text='forbidden')
        with self.assertLogs(level='ERROR') as log:
            result = client.fetch_records('zoneA')
        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 403)
        self.assertEqual(result.records, ())
        self.assertIn("StatusCode: 403", log.output[0])

    def test_fetch_decode_error(self):
        client, session = make_client()
        session.get.return_value = make_response(200, ValueError('bad json'))
        with self.assertLogs(level='ERROR') as log:
            result = client.fetch_records('zoneA')
        self.assertFalse(result.ok)
        self.assertIn('decode error', result.error)
        self.assertIn("Error decoding DNS records response", log.output[0])

    def test_fetch_unexpected_shape(self):
        client, session = make_client()
        session.get.return_value = make_response(200, ['not', 'an', 'object'])
        with self.assertLogs(level='ERROR'):
            result = client.fetch_records('zoneA')
        self.assertFalse(result.ok)

    def test_fetch_transport_error(self):
        client, session = make_client()
        session.get.side_effect = requests.exceptions.ConnectTimeout('timed out')
        with self.assertLogs(level='ERROR') as log:
            result = client.fetch_records('zoneA')
        self.assertFalse(result.ok)
        self.assertIsNone(result.status_code)
        self.assertIn("timed out", log.output[0])

    def test_fetch_api_failure(self):
        client, session = make_client()
        session.get.return_value = make_response(200, {'result': None, 'success': False, 'errors': [{'code': 9109}]})
        with self.assertLogs(level='ERROR'):
            result = client.fetch_records('zoneA')
        self.assertFalse(result.ok)
        self.assertIn('9109', result.error)

    def test_fetch_redirect_is_a_failure(self):
        client, session = make_client()
        session.get.return_value = real_response(302, b'{"result": [], "success": true}')
        with self.assertLogs(level='ERROR') as log:
            result = client.fetch_records('zoneA')
        self.assertFalse(result.ok)
        self.assertEqual(result.status_code, 302)
        self.assertIn("StatusCode: 302", log.output[0])

    def test_fetch_skips_undecodable_record(self):
        client, session = make_client()
        broken = dict(RECORD_JSON)
        del broken['id']
        session.get.return_value = real_response(200, json.dumps({
            'result': [broken, dict(RECORD_JSON, id='rec2'), 'junk'],
            'success': True,
            'result_info': {'page': 1, 'per_page': None, 'count': 3, 'total_count': None, 'total_pages': None},
        }).encode())
        with self.assertLogs(level='WARNING') as log:
            result = client.fetch_records('zoneA')
        self.assertTrue(result.ok)
        self.assertEqual([r.id for r in result.records], ['rec2'])
        self.assertEqual(len(log.output), 2)
        self.assertIn("Skipping undecodable DNS record", log.output[0])

    def test_fetch_warns_on_multiple_pages(self):
        client, session = make_client()
        session.get.return_value = make_response(200, {
            'result': [RECORD_JSON],
            'success': True,
            'result_info': {'page': 1, 'per_page': 1, 'count': 1, 'total_count': 2, 'total_pages': 2},
        })
        with self.assertLogs(level='WARNING') as log:
            result = client.fetch_records('zoneA')
        self.assertTrue(result.ok)
        self.assertIn("only the first was examined", log.output[0])


class TestUpdateRecord(unittest.TestCase):
    def setUp(self):
        self.record = DNSRecord.from_dict(RECORD_JSON)

    def test_update_success(self):
        client, session = make_client()
        session.patch.return_value = make_response(200, {'success': True})
        result = client.update_record(self.record, '203.0.113.9')
        self.assertTrue(result)
        self.assertIsInstance(result, UpdateResult)

        args, kwargs = session.patch.call_args
        self.assertEqual(args[0], 'https://api.cloudflare.com/client/v4/zones/zoneA/dns_records/rec1')
        body = kwargs['json']
        self.assertEqual(body['content'], '203.0.113.9')
        self.assertEqual(body['name'], self.record.name)
        self.assertEqual(body['type'], self.record.type)
        self.assertEqual(body['ttl'], self.record.ttl)
        self.assertEqual(body['id'], self.record.id)
        self.assertEqual(kwargs['headers']['X-Auth-Key'], 'key')

    def test_update_not_modified_is_not_applied(self):
        client, session = make_client()
        session.patch.return_value = real_response(304)
        with self.assertLogs(level='ERROR'):
            result = client.update_record(self.record, '203.0.113.9')
        self.assertFalse(result)
        self.assertEqual(result.status_code, 304)

    def test_update_rejected(self):
        client, session = make_client()
        session.patch.return_value = make_response(400, text='{"success":false}')
        with self.assertLogs(level='ERROR') as log:
            result = client.update_record(self.record, '203.0.113.9')
        self.assertFalse(result)
        self.assertEqual(result.status_code, 400)
        self.assertIn('{"success":false}', log.output[0])

    def test_update_transport_error(self):
        client, session = make_client()
        session.patch.side_effect = requests.exceptions.ConnectionError('refused')
        with self.assertLogs(level='ERROR'):
            result = client.update_record(self.record, '203.0.113.9')
        self.assertFalse(result)
        self.assertIn('refused', result.reason)


class TestResults(unittest.TestCase):
    def test_fetch_result_ok(self):
        self.assertTrue(FetchResult().ok)
        self.assertFalse(FetchResult(error='HTTP 500').ok)

    def test_update_result_truthiness(self):
        self.assertTrue(UpdateResult(applied=True))
        self.assertFalse(UpdateResult(applied=False, reason='HTTP 500'))


if __name__ == '__main__':
    unittest.main()
