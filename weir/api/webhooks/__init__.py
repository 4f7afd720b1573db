"""GitHub webhook intake resource.

Usage
-----
Register the resource with an envelope sink::

    from weir.api.webhooks.resources import GitHubWebhookResource

    app.add_route("/webhooks/github", GitHubWebhookResource(writer))
"""
