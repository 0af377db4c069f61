"""Tests for link classification against site and affiliate domains."""

import pytest

from perdia.link_classifier import LinkClassifier, LinkType, classify_link, normalize_host


@pytest.fixture
def classifier():
    return LinkClassifier("geteducated.com", ["partner-lms.org"])


class TestClassify:
    def test_affiliate(self, classifier):
        assert classifier.classify("https://partner-lms.org/course") == LinkType.AFFILIATE

    def test_relative_is_internal(self, classifier):
        assert classifier.classify("/courses/mba") == LinkType.INTERNAL

    def test_external(self, classifier):
        assert classifier.classify("https://nces.gov/data") == LinkType.EXTERNAL

    def test_www_prefix_is_internal(self, classifier):
        assert classifier.classify("https://www.geteducated.com/rankings/") == LinkType.INTERNAL

    def test_affiliate_subdomain(self, classifier):
        assert classifier.classify("https://go.partner-lms.org/r?id=1") == LinkType.AFFILIATE

    def test_other_subdomain_of_site_is_external(self, classifier):
        assert classifier.classify("https://blog.geteducated.com/") == LinkType.EXTERNAL

    def test_protocol_relative(self, classifier):
        assert classifier.classify("//geteducated.com/page") == LinkType.INTERNAL

    def test_site_domain_given_as_url(self):
        classifier = LinkClassifier("https://www.GetEducated.com/")
        assert classifier.site_domain == "geteducated.com"
        assert classifier.classify("https://geteducated.com/x") == LinkType.INTERNAL

    def test_relative_without_site_domain(self):
        assert LinkClassifier().classify("/courses/mba") == LinkType.INTERNAL

    def test_module_helper(self):
        assert classify_link("https://partner-lms.org/course", "geteducated.com", ["partner-lms.org"]) == LinkType.AFFILIATE


class TestResolve:
    def test_relative_resolved_against_site(self, classifier):
        assert classifier.resolve("/courses/mba") == "https://geteducated.com/courses/mba"
        assert classifier.resolve("rankings/") == "https://geteducated.com/rankings/"

    def test_anchor_and_empty_skipped(self, classifier):
        assert classifier.resolve("#section") is None
        assert classifier.resolve("") is None
        assert classifier.resolve(None) is None

    def test_absolute_unchanged(self, classifier):
        assert classifier.resolve("https://nces.gov/data") == "https://nces.gov/data"

    def test_normalize_host(self):
        assert normalize_host("WWW.Example.COM.") == "example.com"
