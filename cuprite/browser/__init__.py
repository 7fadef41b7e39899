"""
Browser session core.

- transport: channel to the browser's remote debugging websocket
- dispatcher: command/response correlation and event routing
- waiter: one-shot event waits
- context: frame stack and window registry
- geometry: pointer target points and visibility
- session: the `Browser` facade composing the above
"""
