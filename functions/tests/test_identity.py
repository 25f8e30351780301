"""Tests for the identity session."""
import json
from urllib.parse import parse_qs

import httpx
import pytest

from errors import AuthError
from identity import IdentitySession, SessionState
from notifications import BestEffortDispatcher, FunctionsClient


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


class AuthProvider:
    """Routes identity REST calls to canned answers and records them."""

    def __init__(self):
        self.requests = []
        self.refresh_count = 0
        self.failures = {}

    def __call__(self, request):
        path = request.url.path
        self.requests.append(path)
        if path in self.failures:
            return httpx.Response(400, json={'error': {'message': self.failures[path]}})

        if path == '/v1/token':
            form = parse_qs(request.content.decode())
            self.refresh_count += 1
            return httpx.Response(200, json={
                'user_id': 'user-1',
                'id_token': f"id-token-{self.refresh_count}",
                'refresh_token': form['refresh_token'][0],
                'expires_in': '3600',
            })
        if path == '/v1/accounts:lookup':
            return httpx.Response(200, json={'users': [{'localId': 'user-1', 'email': 'ann@example.com', 'displayName': 'Ann'}]})
        if path in ('/v1/accounts:signInWithPassword', '/v1/accounts:signUp', '/v1/accounts:signInWithIdp'):
            body = json.loads(request.content)
            return httpx.Response(200, json={
                'localId': 'user-1',
                'email': body.get('email', 'ann@example.com'),
                'idToken': 'id-token-0',
                'refreshToken': 'refresh-1',
                'expiresIn': '3600',
                'isNewUser': path == '/v1/accounts:signInWithIdp',
            })
        if path == '/v1/accounts:sendOobCode':
            return httpx.Response(200, json={'email': 'ann@example.com'})
        return httpx.Response(404)


def welcome_dispatcher(status_code=200):
    calls = []

    def handler(request):
        calls.append((request.url.path, json.loads(request.content)['data']))
        return httpx.Response(status_code, json={'result': {'success': True}})

    client = FunctionsClient(base_url='https://functions.test', http_client=httpx.Client(transport=httpx.MockTransport(handler)))
    return BestEffortDispatcher(client), calls


def make_session(provider=None, dispatcher=None, clock=None, profile_store=None):
    provider = provider or AuthProvider()
    session = IdentitySession(
        api_key='web-key',
        http_client=httpx.Client(transport=httpx.MockTransport(provider)),
        dispatcher=dispatcher,
        profile_store=profile_store,
        clock=clock or FakeClock(),
    )
    return session, provider


class TestLifecycle:
    def test_operations_need_initialization(self):
        session, provider = make_session()
        with pytest.raises(AuthError) as error:
            session.sign_in('ann@example.com', 'secret')
        assert error.value.reason == 'not-initialized'
        assert provider.requests == []

    def test_anonymous_start(self):
        session, _ = make_session()
        events = []
        session.add_listener(events.append)

        assert session.initialize() is None
        assert session.state == SessionState.ANONYMOUS
        assert events == [None]

    def test_resumes_from_refresh_token(self):
        session, provider = make_session()
        user = session.initialize('refresh-1')

        assert session.state == SessionState.AUTHENTICATED
        assert user.uid == 'user-1'
        assert user.email == 'ann@example.com'
        assert provider.requests == ['/v1/token', '/v1/accounts:lookup']

    def test_failed_resume_is_anonymous(self):
        provider = AuthProvider()
        provider.failures['/v1/token'] = 'TOKEN_EXPIRED'
        session, _ = make_session(provider)

        with pytest.raises(AuthError) as error:
            session.initialize('refresh-1')
        assert error.value.reason == 'TOKEN_EXPIRED'
        assert session.state == SessionState.ANONYMOUS

    def test_listener_can_be_removed(self):
        session, _ = make_session()
        events = []
        remove = session.add_listener(events.append)
        session.initialize()
        remove()
        session.sign_in('ann@example.com', 'secret')
        assert events == [None]

    def test_removing_a_listener_twice_is_harmless(self):
        session, _ = make_session()
        events = []
        remove = session.add_listener(events.append)
        remove()
        remove()
        session.initialize()
        assert events == []

    def test_sign_out(self):
        session, _ = make_session()
        session.initialize()
        session.sign_in('ann@example.com', 'secret')
        session.sign_out()
        assert session.current_user is None
        assert session.state == SessionState.ANONYMOUS


class TestSignIn:
    def test_sign_in_mirrors_profile(self, project_store):
        session, _ = make_session(profile_store=project_store)
        session.initialize()

        user = session.sign_in('ann@example.com', 'secret')
        assert user.id_token == 'id-token-0'
        assert project_store.get_user_profile('user-1')['email'] == 'ann@example.com'

    def test_provider_error_reason(self):
        provider = AuthProvider()
        provider.failures['/v1/accounts:signUp'] = 'WEAK_PASSWORD : Password should be at least 6 characters'
        session, _ = make_session(provider)
        session.initialize()

        with pytest.raises(AuthError) as error:
            session.sign_up('ann@example.com', '123')
        assert error.value.reason == 'WEAK_PASSWORD'
        assert session.current_user is None

    def test_network_failure(self):
        def unreachable(request):
            raise httpx.ConnectError('connection refused', request=request)

        session = IdentitySession(api_key='web-key', http_client=httpx.Client(transport=httpx.MockTransport(unreachable)))
        session.initialize()
        with pytest.raises(AuthError) as error:
            session.sign_in('ann@example.com', 'secret')
        assert error.value.reason == 'network'

    def test_malformed_success_body(self):
        def list_body(request):
            return httpx.Response(200, json=['user-1'])

        session = IdentitySession(api_key='web-key', http_client=httpx.Client(transport=httpx.MockTransport(list_body)))
        session.initialize()
        with pytest.raises(AuthError) as error:
            session.sign_in('ann@example.com', 'secret')
        assert error.value.reason == 'malformed-response'
        assert session.current_user is None

    def test_sign_up_sends_welcome(self):
        dispatcher, calls = welcome_dispatcher()
        session, _ = make_session(dispatcher=dispatcher)
        session.initialize()

        session.sign_up('new@example.com', 'secret')
        assert calls == [('/sendWelcomeEmail', {'userId': 'user-1', 'email': 'new@example.com', 'displayName': None})]

    def test_failed_welcome_does_not_fail_sign_up(self):
        dispatcher, calls = welcome_dispatcher(status_code=500)
        session, _ = make_session(dispatcher=dispatcher)
        session.initialize()

        user = session.sign_up('new@example.com', 'secret')
        assert user.uid == 'user-1'
        assert session.state == SessionState.AUTHENTICATED
        assert len(dispatcher.failures) == 1

    def test_returning_user_gets_no_welcome(self):
        dispatcher, calls = welcome_dispatcher()
        session, _ = make_session(dispatcher=dispatcher)
        session.initialize()

        session.sign_in('ann@example.com', 'secret')
        assert calls == []

    def test_first_provider_sign_in_is_welcomed(self):
        dispatcher, calls = welcome_dispatcher()
        session, provider = make_session(dispatcher=dispatcher)
        session.initialize()

        session.sign_in_with_provider('google-id-token')
        assert provider.requests == ['/v1/accounts:signInWithIdp']
        assert len(calls) == 1

    def test_reset_password(self):
        session, provider = make_session()
        session.initialize()
        session.reset_password('ann@example.com')
        assert provider.requests == ['/v1/accounts:sendOobCode']


class TestIdToken:
    def test_token_is_reused_while_valid(self):
        session, provider = make_session()
        session.initialize()
        session.sign_in('ann@example.com', 'secret')

        assert session.get_id_token() == 'id-token-0'
        assert provider.refresh_count == 0

    def test_force_refresh(self):
        session, provider = make_session()
        session.initialize()
        session.sign_in('ann@example.com', 'secret')

        assert session.get_id_token(force_refresh=True) == 'id-token-1'
        assert session.current_user.refresh_token == 'refresh-1'

    def test_expired_token_is_refreshed(self):
        clock = FakeClock()
        session, provider = make_session(clock=clock)
        session.initialize()
        session.sign_in('ann@example.com', 'secret')

        clock.now += 3600
        assert session.get_id_token() == 'id-token-1'

    def test_no_user(self):
        session, _ = make_session()
        session.initialize()
        with pytest.raises(AuthError) as error:
            session.get_id_token()
        assert error.value.reason == 'unauthenticated'

    def test_emulator_host(self, monkeypatch):
        monkeypatch.setenv('FIREBASE_AUTH_EMULATOR_HOST', 'localhost:9099')
        urls = []

        def handler(request):
            urls.append(str(request.url))
            return httpx.Response(200, json={'localId': 'user-1', 'idToken': 't', 'refreshToken': 'r'})

        session = IdentitySession(api_key='web-key', http_client=httpx.Client(transport=httpx.MockTransport(handler)))
        session.initialize()
        session.sign_in('ann@example.com', 'secret')
        assert urls[0].startswith('http://localhost:9099/identitytoolkit.googleapis.com/v1/accounts:signInWithPassword')
