"""SiteWatch command line interface."""
