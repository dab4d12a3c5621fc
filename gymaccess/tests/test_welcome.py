from typing import List, Optional

from gymaccess.app.billing import Tier
from gymaccess.app.geo import GeoapifyGeocoder, GeoPoint, geocoding
from gymaccess.app.passes import Facility
from gymaccess.app.services.welcome import WelcomeEmailNotifier, build_welcome_context
from gymaccess.mail import EmailProvider, OutboundEmail
from gymaccess.tests.fakes import make_subscription


class _RecordingProvider(EmailProvider):
    name = "recording"

    def __init__(self) -> None:
        super().__init__(sender="noreply@example.com")
        self.sent: List[dict] = []

    def send(self, message: OutboundEmail) -> None:
        self.sent.append(
            {"to": message.recipient, "subject": message.subject, "html": message.html_body, "text": message.text_body}
        )


class _StaticGeocoder:
    def __init__(self, point: Optional[GeoPoint]) -> None:
        self.point = point
        self.queries: List[str] = []

    def geocode(self, query: str) -> Optional[GeoPoint]:
        self.queries.append(query)
        return self.point


FACILITIES = [
    Facility(facility_id=1, name="Smith & Sons Gym", latitude=51.5136, longitude=-0.1365),
    Facility(facility_id=2, name="Closed Gym", latitude=51.5074, longitude=-0.1278, status="inactive"),
    Facility(facility_id=3, name="Manchester Gym", latitude=53.4808, longitude=-2.2426),
    Facility(facility_id=4, name="Unmapped Gym"),
]


def _notifier(provider, geocoder, facilities=lambda: FACILITIES):
    return WelcomeEmailNotifier(
        email_provider=provider,
        facilities=facilities,
        geocoder=geocoder,
        app_base_url="https://app.example/",
        facility_count=3,
    )


def test_welcome_email_lists_nearest_operational_gyms():
    provider = _RecordingProvider()
    geocoder = _StaticGeocoder(GeoPoint(latitude=51.5074, longitude=-0.1278))
    subscription = make_subscription(tier=Tier.PREMIUM, monthly_limit=20)

    _notifier(provider, geocoder).notify_subscription_started(
        subscription, email="alex@example.com", name="Alex Member", postcode="W1D 3QF"
    )

    assert geocoder.queries == ["W1D 3QF"]
    message = provider.sent[0]
    assert message["to"] == "alex@example.com"
    assert message["subject"] == "Welcome to your Premium membership, Alex!"
    assert "up to 20 gym passes" in message["text"]
    assert "Gyms near you:" in message["text"]
    assert "- Smith & Sons Gym" in message["text"]
    assert "Closed Gym" not in message["text"]
    assert "Unmapped Gym" not in message["text"]
    assert message["text"].index("Smith & Sons Gym") < message["text"].index("Manchester Gym")
    assert "Smith &amp; Sons Gym" in message["html"]
    assert 'href="https://app.example/gyms"' in message["html"]


def test_welcome_email_without_postcode_omits_nearby_section():
    provider = _RecordingProvider()
    geocoder = _StaticGeocoder(GeoPoint(latitude=0.0, longitude=0.0))

    _notifier(provider, geocoder).notify_subscription_started(
        make_subscription(), email="sam@example.com", name=None, postcode=None
    )

    assert geocoder.queries == []
    message = provider.sent[0]
    assert message["subject"] == "Welcome to your Standard membership, sam!"
    assert "Gyms near you" not in message["text"]


def test_welcome_email_survives_failed_lookups():
    provider = _RecordingProvider()

    def broken_facilities():
        raise RuntimeError("database down")

    _notifier(provider, _StaticGeocoder(GeoPoint(latitude=1.0, longitude=1.0)), broken_facilities).notify_subscription_started(
        make_subscription(), email="sam@example.com", name="Sam", postcode="AB1 2CD"
    )
    _notifier(provider, _StaticGeocoder(None)).notify_subscription_started(
        make_subscription(), email="sam@example.com", name="Sam", postcode="AB1 2CD"
    )

    assert len(provider.sent) == 2
    assert all("Gyms near you" not in message["text"] for message in provider.sent)


class _TimedOutResponse:
    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def read(self):
        raise TimeoutError("The read operation timed out")


def test_welcome_email_sent_when_geocoding_times_out(monkeypatch):
    monkeypatch.setattr(geocoding.urllib_request, "urlopen", lambda url, timeout: _TimedOutResponse())
    provider = _RecordingProvider()

    _notifier(provider, GeoapifyGeocoder("key")).notify_subscription_started(
        make_subscription(), email="sam@example.com", name="Sam", postcode="SW1A 1AA"
    )

    assert len(provider.sent) == 1
    assert provider.sent[0]["to"] == "sam@example.com"
    assert "Gyms near you" not in provider.sent[0]["text"]


class _ExplodingGeocoder:
    def geocode(self, query: str) -> Optional[GeoPoint]:
        raise RuntimeError("geocoder misconfigured")


def test_welcome_email_sent_when_geocoder_raises():
    provider = _RecordingProvider()

    _notifier(provider, _ExplodingGeocoder()).notify_subscription_started(
        make_subscription(), email="sam@example.com", name="Sam", postcode="SW1A 1AA"
    )

    assert len(provider.sent) == 1
    assert "Gyms near you" not in provider.sent[0]["text"]


def test_welcome_email_requires_recipient():
    provider = _RecordingProvider()

    _notifier(provider, _StaticGeocoder(None)).notify_subscription_started(
        make_subscription(), email=None, name="Sam", postcode=None
    )

    assert provider.sent == []


def test_build_welcome_context():
    context = build_welcome_context(
        make_subscription(tier=Tier.ELITE, monthly_limit=30),
        email="jo@example.com",
        name="  Jo Bloggs ",
        nearby=[],
        app_base_url="https://app.example",
    )

    assert context == {
        "first_name": "Jo",
        "tier_name": "Elite",
        "monthly_limit": 30,
        "nearby_text": "",
        "nearby_html": "",
        "passes_url": "https://app.example/gyms",
    }
