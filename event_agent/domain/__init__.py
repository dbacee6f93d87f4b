"""领域层模型与协议。

包含：
- models: Provider 消息联合类型、调用配置与流式增量模型。
- conversation: 会话与消息的存储模型及 ConversationStore 抽象。
- quota: 每日配额协议。
- events: 发往客户端的线协议事件。
- exceptions: 业务异常类型定义。
"""
