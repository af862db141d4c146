"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult / StreamEvent 模型。
- conversation: 会话、消息与上传文件的存储模型及 Store 抽象。
- exceptions: 业务异常类型定义。
"""
