'''Minimal Cloudflare DNS records client used by cfdynip

(c) 2017-2025 - Jason Burks https://github.com/jburks725

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <http://www.gnu.org/licenses/>.
'''
import logging
from dataclasses import dataclass, field, asdict
from typing import Optional

import requests

# Constants
API_BASE = 'https://api.cloudflare.com/client/v4'
DEFAULT_TIMEOUT = 10  # seconds


def is_success(response):
    '''Only 2xx counts; requests treats redirects as ok'''
    return 200 <= response.status_code < 300


@dataclass(frozen=True)
class Meta:
    auto_added: bool = False
    managed_by_apps: bool = False
    managed_by_argo_tunnel: bool = False

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            auto_added=bool(data.get('auto_added', False)),
            managed_by_apps=bool(data.get('managed_by_apps', False)),
            managed_by_argo_tunnel=bool(data.get('managed_by_argo_tunnel', False)),
        )


@dataclass(frozen=True)
class DNSRecord:
    '''A snapshot of one record as returned by the Cloudflare API'''
    id: str
    zone_id: str
    name: str
    type: str
    content: str
    ttl: int = 1
    zone_name: str = ''
    proxiable: bool = False
    proxied: bool = False
    meta: Meta = field(default_factory=Meta)
    comment: Optional[str] = None
    tags: tuple = ()
    created_on: str = ''
    modified_on: str = ''
    priority: Optional[int] = None  # MX records only

    @classmethod
    def from_dict(cls, data):
        '''Build a record from its API representation, ignoring unknown keys'''
        return cls(
            id=data['id'],
            zone_id=data.get('zone_id', ''),
            name=data.get('name', ''),
            type=data.get('type', ''),
            content=data.get('content', ''),
            ttl=int(data.get('ttl', 1)),
            zone_name=data.get('zone_name', ''),
            proxiable=bool(data.get('proxiable', False)),
            proxied=bool(data.get('proxied', False)),
            meta=Meta.from_dict(data.get('meta')),
            comment=data.get('comment'),
            tags=tuple(data.get('tags') or ()),
            created_on=data.get('created_on', ''),
            modified_on=data.get('modified_on', ''),
            priority=data.get('priority'),
        )


@dataclass(frozen=True)
class ResultInfo:
    page: int = 1
    per_page: int = 0
    count: int = 0
    total_count: int = 0
    total_pages: int = 1

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(**{k: int(data[k]) for k in ('page', 'per_page', 'count', 'total_count', 'total_pages') if data.get(k) is not None})


def decode_records(items):
    '''Decode a record list, skipping entries that are not usable records'''
    records = []
    for item in items:
        try:
            records.append(DNSRecord.from_dict(item))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logging.warning(f"Skipping undecodable DNS record {item!r}: {e}")
    return tuple(records)


@dataclass(frozen=True)
class DNSRecordsResponse:
    result: tuple
    success: bool
    errors: tuple = ()
    messages: tuple = ()
    result_info: ResultInfo = field(default_factory=ResultInfo)

    @classmethod
    def from_dict(cls, data):
        return cls(
            result=decode_records(data.get('result') or ()),
            success=bool(data.get('success', False)),
            errors=tuple(data.get('errors') or ()),
            messages=tuple(data.get('messages') or ()),
            result_info=ResultInfo.from_dict(data.get('result_info')),
        )


@dataclass(frozen=True)
class DNSRecordUpdate:
    '''Body of a PATCH to a single DNS record'''
    content: str
    name: str
    proxied: bool
    type: str
    comment: Optional[str]
    id: str
    tags: tuple
    ttl: int

    @classmethod
    def for_record(cls, record, content):
        '''Copy everything from the record except the content'''
        return cls(
            content=content,
            name=record.name,
            proxied=record.proxied,
            type=record.type,
            comment=record.comment,
            id=record.id,
            tags=record.tags,
            ttl=record.ttl,
        )

    def to_dict(self):
        body = asdict(self)
        body['tags'] = list(self.tags)
        return body


@dataclass(frozen=True)
class FetchResult:
    records: tuple = ()
    error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def ok(self):
        return self.error is None


@dataclass(frozen=True)
class UpdateResult:
    applied: bool
    status_code: Optional[int] = None
    reason: str = ''

    def __bool__(self):
        return self.applied


class CloudflareClient:
    '''Reads and patches DNS records using global API key authentication

    Failures are logged and returned as FetchResult/UpdateResult values,
    never raised, so one bad zone does not stop a whole update cycle.
    '''

    def __init__(self, api_key, email, session=None, timeout=DEFAULT_TIMEOUT, api_base=API_BASE):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.api_base = api_base.rstrip('/')
        self.headers = {
            'Content-Type': 'application/json',
            'X-Auth-Key': api_key,
            'X-Auth-Email': email,
        }

    def _records_url(self, zone_id):
        return f"{self.api_base}/zones/{zone_id}/dns_records"

    def fetch_records(self, zone_id):
        '''Retrieve the DNS records of a zone'''
        logging.debug(f"Getting DNS records from Cloudflare for zone {zone_id}")
        try:
            response = self.session.get(self._records_url(zone_id), headers=self.headers, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logging.error(f"Error calling Cloudflare API for zone {zone_id}: {e}")
            return FetchResult(error=f"transport error: {e}")

        if not is_success(response):
            logging.error(f"Error getting DNS records from Cloudflare for zone {zone_id} StatusCode: {response.status_code}")
            return FetchResult(error=f"HTTP {response.status_code}", status_code=response.status_code)

        try:
            parsed = DNSRecordsResponse.from_dict(response.json())
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logging.error(f"Error decoding DNS records response from Cloudflare for zone {zone_id}: {e}")
            return FetchResult(error=f"decode error: {e}", status_code=response.status_code)

        if not parsed.success:
            logging.error(f"Cloudflare reported failure for zone {zone_id}: {list(parsed.errors)}")
            return FetchResult(error=f"API error: {list(parsed.errors)}", status_code=response.status_code)

        if parsed.result_info.total_pages > 1:
            logging.warning(f"Zone {zone_id} has {parsed.result_info.total_pages} pages of records, only the first was examined")

        return FetchResult(records=parsed.result, status_code=response.status_code)

    def update_record(self, record, content):
        '''Point an existing record at new content, keeping its other settings'''
        logging.info(f"Updating DNS record in Cloudflare {record.name}")
        body = DNSRecordUpdate.for_record(record, content).to_dict()
        try:
            response = self.session.patch(
                f"{self._records_url(record.zone_id)}/{record.id}",
                headers=self.headers,
                json=body,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logging.error(f"Error calling Cloudflare API for record {record.name}: {e}")
            return UpdateResult(applied=False, reason=f"transport error: {e}")

        if is_success(response):
            return UpdateResult(applied=True, status_code=response.status_code)

        logging.error(f"Error updating DNS record for Cloudflare StatusCode: {response.status_code} Response: {response.text}")
        return UpdateResult(applied=False, status_code=response.status_code, reason=f"HTTP {response.status_code}: {response.text}")
